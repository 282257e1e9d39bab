"""Tests for the console entry point."""

from __future__ import annotations

from unittest.mock import patch

from conftest import FakeGateway, make_settings

from bankapp_deployer import pipeline
from bankapp_deployer.coordinator import DeploymentCoordinator
from bankapp_deployer.errors import ConfigError, PlatformError


class TestBuildSteps:
    def test_no_external_checks_configured(self) -> None:
        assert pipeline.build_steps(make_settings()) == []

    def test_quality_gate_and_registry(self) -> None:
        settings = make_settings(SONAR_HOST_URL="https://sonar.example.com", REGISTRY_URL="https://registry.example.com")
        assert [step.name for step in pipeline.build_steps(settings)] == ["QualityGate", "ImagePush"]


class TestMain:
    def test_success_exit_code(self, capsys) -> None:
        settings = make_settings()
        coordinator = DeploymentCoordinator(FakeGateway(), settings)
        with patch.object(pipeline, "load_settings", return_value=settings), \
                patch.object(pipeline, "build_coordinator", return_value=coordinator), \
                patch.object(pipeline, "load_dotenv"):
            assert pipeline.main() == 0
        assert capsys.readouterr().out.strip() == "Success"

    def test_failed_run_exit_code(self, capsys) -> None:
        settings = make_settings(VERIFY_DEPLOYMENT=False)
        gateway = FakeGateway()
        gateway.failures["apply:mysql-ds.yml"] = PlatformError("apply mysql-ds.yml", "forbidden", 403)
        coordinator = DeploymentCoordinator(gateway, settings)
        with patch.object(pipeline, "load_settings", return_value=settings), \
                patch.object(pipeline, "build_coordinator", return_value=coordinator), \
                patch.object(pipeline, "load_dotenv"):
            assert pipeline.main() == 1
        assert capsys.readouterr().out.strip() == "Failed-at-Dependencies"

    def test_config_error(self, capsys) -> None:
        with patch.object(pipeline, "load_settings", side_effect=ConfigError("bad DEPLOY_ENVIRONMENT")), \
                patch.object(pipeline, "load_dotenv"):
            assert pipeline.main() == 2
        assert capsys.readouterr().out.strip() == "Failed-at-Config"

    def test_cluster_unreachable(self, capsys) -> None:
        with patch.object(pipeline, "load_settings", return_value=make_settings()), \
                patch.object(pipeline, "KubeClient", side_effect=PlatformError("load_config", "no kubeconfig")), \
                patch.object(pipeline, "load_dotenv"):
            assert pipeline.main() == 1
        assert capsys.readouterr().out.strip() == "Failed-at-Connect"
