"""Tests for deploydag.core.executor module."""

import asyncio
import json

import pytest

from deploydag.adapters.mock_deployer import MockDeployer, MockResponse
from deploydag.core.domain.environment import Environment
from deploydag.core.domain.run import Outcome, StageAction
from deploydag.core.executor import CommandExecutor, classify_output
from deploydag.core.ports.deployer import DeployCommand, DeployerOutput
from deploydag.core.registry import EnvironmentRegistry


def command_for(env: Environment, action: StageAction = StageAction.DEPLOY) -> DeployCommand:
    return DeployCommand(
        environment_id=env.id,
        credential_ref=env.credential_ref,
        artifact_path="force-app",
        test_level=env.test_level,
        action=action,
        revision="abc123",
    )


class TestClassifyOutput:
    def test_success(self) -> None:
        result = classify_output(0, json.dumps({"status": 0, "result": {"id": "0Af"}}))
        assert result.outcome is Outcome.SUCCESS
        assert result.payload == {"status": 0, "result": {"id": "0Af"}}
        assert result.error is None

    def test_application_failure_summarizes_details(self) -> None:
        details = [
            {"problem": "Invalid field Amount__c"},
            {"message": "Test failure in InvoiceTest"},
            {"name": "Account.cls"},
            "plain detail",
        ]
        result = classify_output(1, json.dumps({"status": 1, "result": {"details": details}}))
        assert result.outcome is Outcome.APPLICATION_FAILURE
        assert result.error == (
            "Invalid field Amount__c; Test failure in InvoiceTest; Account.cls; ... and 1 more"
        )

    def test_application_failure_without_details(self) -> None:
        payload = {"status": 1, "result": {"message": "Deploy failed"}}
        result = classify_output(1, json.dumps(payload))
        assert result.outcome is Outcome.APPLICATION_FAILURE
        assert result.error == "Deploy failed"

    @pytest.mark.parametrize(
        ("exit_code", "stdout", "reason"),
        [
            (1, "Error: unexpected EOF", "exit code 1 without JSON"),
            (0, "", "unparseable output"),
            (0, "[1, 2]", "expected a JSON object"),
            (0, '{"result": {}}', "missing integer 'status'"),
            (0, '{"status": true}', "missing integer 'status'"),
            (1, '{"status": 1, "message": "ECONNRESET"}', "ECONNRESET"),
            (1, '{"status": 1, "result": null}', "status 1 without a result"),
            (137, '{"status": 0, "result": {}}', "process exited 137"),
        ],
    )
    def test_infrastructure_failures(self, exit_code: int, stdout: str, reason: str) -> None:
        result = classify_output(exit_code, stdout)
        assert result.outcome is Outcome.INFRASTRUCTURE_FAILURE
        assert reason in (result.error or "")


class TestCommandExecutor:
    @pytest.mark.asyncio
    async def test_success(self, registry: EnvironmentRegistry) -> None:
        deployer = MockDeployer({"qa": [MockResponse.success(id="0Af")]})
        env = registry.resolve("qa")
        result = await CommandExecutor(deployer).execute(env, command_for(env), timeout=5)
        assert result.outcome is Outcome.SUCCESS
        assert result.exit_code == 0
        assert result.structured_output["result"]["id"] == "0Af"
        assert result.argv[:2] == ["mock-deploy", "deploy"]
        assert result.duration_ms >= 0
        assert not result.retry_eligible

    @pytest.mark.asyncio
    async def test_application_failure(self, registry: EnvironmentRegistry) -> None:
        deployer = MockDeployer({"qa": [MockResponse.failure({"problem": "bad metadata"})]})
        env = registry.resolve("qa")
        result = await CommandExecutor(deployer).execute(env, command_for(env))
        assert result.outcome is Outcome.APPLICATION_FAILURE
        assert result.error == "bad metadata"
        assert not result.retry_eligible

    @pytest.mark.asyncio
    async def test_malformed_output_includes_stderr(self, registry: EnvironmentRegistry) -> None:
        response = MockResponse(exit_code=1, stdout="garbage", stderr="socket hang up\n")
        env = registry.resolve("qa")
        result = await CommandExecutor(MockDeployer({"qa": [response]})).execute(
            env, command_for(env)
        )
        assert result.outcome is Outcome.INFRASTRUCTURE_FAILURE
        assert result.error == "exit code 1 without JSON: socket hang up"
        assert result.retry_eligible

    @pytest.mark.asyncio
    async def test_unreachable_boundary(self, registry: EnvironmentRegistry) -> None:
        deployer = MockDeployer({"*": [MockResponse.unreachable("connection refused")]})
        env = registry.resolve("uat")
        result = await CommandExecutor(deployer).execute(env, command_for(env))
        assert result.outcome is Outcome.INFRASTRUCTURE_FAILURE
        assert result.error == "ConnectionError: connection refused"
        assert result.exit_code is None

    @pytest.mark.asyncio
    async def test_timeout_stops_the_command(self, registry: EnvironmentRegistry) -> None:
        deployer = MockDeployer({"prod": [MockResponse.hang()]})
        env = registry.resolve("prod")
        result = await CommandExecutor(deployer).execute(env, command_for(env), timeout=0.05)
        assert result.outcome is Outcome.TIMEOUT
        assert result.error == "timed out after 0.05s"
        assert result.retry_eligible
        assert deployer.cancelled == deployer.calls

    @pytest.mark.asyncio
    async def test_default_timeout(self, registry: EnvironmentRegistry) -> None:
        deployer = MockDeployer({"prod": [MockResponse.hang()]})
        env = registry.resolve("prod")
        result = await CommandExecutor(deployer, default_timeout=0.05).execute(
            env, command_for(env)
        )
        assert result.outcome is Outcome.TIMEOUT

    @pytest.mark.asyncio
    async def test_cancel_event_stops_the_command(self, registry: EnvironmentRegistry) -> None:
        deployer = MockDeployer({"prod": [MockResponse.hang()]})
        env = registry.resolve("prod")
        cancel_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel_event.set)

        result = await CommandExecutor(deployer).execute(
            env, command_for(env), timeout=10, cancel_event=cancel_event
        )
        assert result.outcome is Outcome.TIMEOUT
        assert result.error == "run cancelled"
        assert len(deployer.cancelled) == 1

    @pytest.mark.asyncio
    async def test_already_cancelled_never_invokes(self, registry: EnvironmentRegistry) -> None:
        deployer = MockDeployer()
        env = registry.resolve("qa")
        cancel_event = asyncio.Event()
        cancel_event.set()
        result = await CommandExecutor(deployer).execute(
            env, command_for(env), cancel_event=cancel_event
        )
        assert result.outcome is Outcome.TIMEOUT
        assert deployer.calls == []

    @pytest.mark.asyncio
    async def test_environment_mismatch(self, registry: EnvironmentRegistry) -> None:
        executor = CommandExecutor(MockDeployer())
        with pytest.raises(ValueError, match="targets 'qa'"):
            await executor.execute(registry.resolve("prod"), command_for(registry.resolve("qa")))

    @pytest.mark.asyncio
    async def test_deployer_argv_preferred(self, registry: EnvironmentRegistry) -> None:
        class EchoDeployer:
            def render(self, command: DeployCommand) -> list[str]:
                return ["planned"]

            async def invoke(self, command: DeployCommand) -> DeployerOutput:
                return DeployerOutput(0, '{"status": 0, "result": {}}', argv=["actual"])

        env = registry.resolve("qa")
        result = await CommandExecutor(EchoDeployer()).execute(env, command_for(env))
        assert result.argv == ["actual"]
