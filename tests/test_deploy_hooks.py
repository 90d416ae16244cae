"""
Tests for the deployment lifecycle hooks.

The docker engine is a MagicMock constrained to DockerSwarmEngine; the
lock row lives in a file-backed store; every wait loop runs on the fake
clock.
"""

import os
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from swarmlock.deploy.hooks import (
    BEFORE_INSTALL_VARS,
    VALIDATE_SERVICE_VARS,
    DeploymentContext,
    DeploymentHooks,
    config_base_name,
    render_manifest,
)
from swarmlock.engine.swarm_engine import DockerSwarmEngine
from swarmlock.utils.error_handling import ConfigurationError, DeploymentError, EngineError


CLUSTER = "auth-sample-cluster"

MANIFEST = """\
version: "3.8"
services:
  ${SERVICE_NAME}:
    image: registry.example/auth:${VERSION}
    environment:
      - APP_ENV=${ENVIRONMENT}
      - SHELL_VAR=${HOME}
      - LITERAL=$$PATH
    secrets:
      - source: tls.crt_${TS}
networks:
  default:
    external: true
    name: ${NETWORK_NAME}
"""


@pytest.fixture
def archive(temp_dir: Path) -> Path:
    """A revision archive with a stack file, two configs and a hook env."""
    root = temp_dir / "archive"
    (root / "configs").mkdir(parents=True)
    (root / "scripts").mkdir()
    (root / "stack.yml").write_text(MANIFEST)
    (root / "configs" / "app.settings.yml").write_text("a: 1\n")
    (root / "configs" / "logging.yaml").write_text("level: info\n")
    (root / "configs" / "README.md").write_text("not a config\n")
    (root / "scripts" / "env.sh").write_text(
        "export STACK_FILE=stack.yml\n"
        "export SERVICE_NAME=auth\n"
        "export ENVIRONMENT=staging\n"
    )
    return root


@pytest.fixture
def context(archive: Path) -> DeploymentContext:
    return DeploymentContext(
        archive_root=archive,
        deployment_id="d-123",
        stack_file="stack.yml",
        service_name="auth",
        version="42",
        environment="staging",
    )


@pytest.fixture
def cert_dir(temp_dir: Path) -> Path:
    certs = temp_dir / "certs"
    for ts in ("1700000000", "1800000000"):
        (certs / ts).mkdir(parents=True)
        (certs / ts / "tls.crt").write_text("crt")
        (certs / ts / "tls.key").write_text("key")
    (certs / "latest").mkdir()
    return certs


@pytest.fixture
def engine() -> MagicMock:
    engine = MagicMock(spec=DockerSwarmEngine)
    engine.network_exists.return_value = True
    engine.secret_exists.return_value = True
    engine.config_exists.return_value = False
    engine.list_configs.return_value = []
    engine.stack_task_states.return_value = ["Running 3 seconds ago"]
    engine.service_state.return_value = "Running 3 seconds ago"
    return engine


@pytest.fixture
def hooks(context, file_store, engine, poller, cert_dir, temp_dir) -> DeploymentHooks:
    file_store.conditional_update(CLUSTER, {
        'manager_private_ip': '10.0.1.10',
        'lease_expires_at': '2025-01-01T12:05:00Z',
        'swarm_overlay_network_name': 'app-network',
    })
    return DeploymentHooks(context, file_store, engine, CLUSTER, poller=poller,
                           cert_dir=str(cert_dir), staging_dir=str(temp_dir / "staging"))


# ===========================================================================
# Context and manifest
# ===========================================================================

class TestDeploymentContext:
    """Tests for reading the hook environment."""

    def test_archive_root_from_deployment_ids(self):
        context = DeploymentContext.from_environment(
            {'DEPLOYMENT_GROUP_ID': 'g-1', 'DEPLOYMENT_ID': 'd-2', 'SERVICE_NAME': 'auth'},
            required=VALIDATE_SERVICE_VARS,
        )
        assert context.archive_root == Path(
            "/opt/codedeploy-agent/deployment-root/g-1/d-2/deployment-archive"
        )
        assert context.config_dir == context.archive_root / "configs"

    def test_missing_deployment_ids(self):
        with pytest.raises(ConfigurationError) as exc_info:
            DeploymentContext.from_environment({'DEPLOYMENT_GROUP_ID': 'g-1'})
        assert "DEPLOYMENT_ID" in str(exc_info.value)

    def test_hook_env_file_fills_values(self, archive):
        context = DeploymentContext.from_environment(
            {'DEPLOYMENT_ARCHIVE_ROOT': str(archive)},
            required=BEFORE_INSTALL_VARS,
        )
        assert context.stack_file == "stack.yml"
        assert context.service_name == "auth"
        assert context.stack_source == archive / "stack.yml"

    def test_process_environment_overrides_hook_env(self, archive):
        context = DeploymentContext.from_environment({
            'DEPLOYMENT_ARCHIVE_ROOT': str(archive),
            'ENVIRONMENT': 'production',
            'VERSION': '7',
            'SERVICE_NAME': '',
        })
        assert context.environment == "production"
        assert context.version == "7"
        assert context.service_name == "auth"

    def test_missing_required_variable(self, archive):
        with pytest.raises(ConfigurationError) as exc_info:
            DeploymentContext.from_environment({'DEPLOYMENT_ARCHIVE_ROOT': str(archive)})
        assert "VERSION" in str(exc_info.value)


class TestManifest:
    """Tests for placeholder substitution."""

    def test_render_known_placeholders(self):
        rendered = render_manifest(MANIFEST, {
            'NETWORK_NAME': 'app-network',
            'TS': '1800000000',
            'ENVIRONMENT': 'staging',
            'VERSION': '42',
            'SERVICE_NAME': 'auth',
        })

        assert "name: app-network" in rendered
        assert "tls.crt_1800000000" in rendered
        assert "auth:42" in rendered
        assert "${" not in rendered.replace("${HOME}", "")

    def test_other_dollar_sequences_untouched(self):
        rendered = render_manifest(MANIFEST, {'VERSION': '42'})

        assert "SHELL_VAR=${HOME}" in rendered
        assert "LITERAL=$$PATH" in rendered
        assert "${NETWORK_NAME}" in rendered

    def test_config_base_name(self):
        assert config_base_name(Path("app.settings.yml")) == "app_settings"
        assert config_base_name(Path("logging.yaml")) == "logging"


# ===========================================================================
# BeforeInstall
# ===========================================================================

class TestBeforeInstall:
    """Tests for network resolution."""

    def test_before_install_verifies_network(self, hooks, engine):
        assert hooks.before_install() == "app-network"
        engine.network_exists.assert_called_once_with("app-network")

    def test_missing_network(self, hooks, engine):
        engine.network_exists.return_value = False
        with pytest.raises(DeploymentError):
            hooks.before_install()

    def test_missing_lock_row(self, context, file_store, engine, poller):
        hooks = DeploymentHooks(context, file_store, engine, "other-cluster", poller=poller)
        with pytest.raises(DeploymentError):
            hooks.before_install()

    def test_row_without_network_name(self, context, file_store, engine, poller):
        file_store.conditional_update("bare", {'lease_expires_at': 'x'})
        hooks = DeploymentHooks(context, file_store, engine, "bare", poller=poller)
        with pytest.raises(DeploymentError) as exc_info:
            hooks.resolve_network_name()
        assert "Network name not found" in str(exc_info.value)


# ===========================================================================
# Certificates and configs
# ===========================================================================

class TestCertificateSelection:
    """Tests for picking the newest complete bundle."""

    def test_newest_complete_bundle(self, hooks, engine):
        assert hooks.select_certificate_timestamp() == "1800000000"
        engine.secret_exists.assert_any_call("tls.crt_1800000000")

    def test_incomplete_bundle_skipped(self, hooks, engine):
        engine.secret_exists.side_effect = lambda name: name != "tls.key_1800000000"
        assert hooks.select_certificate_timestamp() == "1700000000"

    def test_numeric_ordering(self, hooks, cert_dir):
        (cert_dir / "999").mkdir()
        (cert_dir / "999" / "tls.crt").write_text("old")
        assert hooks.select_certificate_timestamp() == "1800000000"

    def test_empty_bundle_skipped(self, hooks, cert_dir):
        (cert_dir / "1900000000").mkdir()
        assert hooks.select_certificate_timestamp() == "1800000000"

    def test_no_valid_bundle(self, hooks, engine):
        engine.secret_exists.return_value = False
        with pytest.raises(DeploymentError):
            hooks.select_certificate_timestamp()

    def test_missing_cert_dir(self, hooks, temp_dir):
        with pytest.raises(DeploymentError):
            hooks.select_certificate_timestamp(temp_dir / "nope")


class TestConfigs:
    """Tests for versioned docker configs."""

    def test_publish_creates_versioned_configs(self, hooks, engine, archive):
        names = hooks.publish_versioned_configs()

        assert names == ["app_settings_config_42", "logging_config_42"]
        engine.create_config.assert_any_call(
            "app_settings_config_42", str(archive / "configs" / "app.settings.yml")
        )
        assert engine.create_config.call_count == 2

    def test_publish_reuses_existing(self, hooks, engine):
        engine.config_exists.return_value = True
        hooks.publish_versioned_configs()
        engine.create_config.assert_not_called()

    def test_publish_failure(self, hooks, engine):
        engine.create_config.side_effect = EngineError("config create failed")
        with pytest.raises(DeploymentError):
            hooks.publish_versioned_configs()

    def test_missing_config_dir_skipped(self, hooks, engine, temp_dir):
        assert hooks.publish_versioned_configs(config_dir=temp_dir / "none") == []
        engine.create_config.assert_not_called()

    def test_prune_keeps_newest_three(self, hooks, engine):
        engine.list_configs.return_value = [
            "logging_config_1", "logging_config_2", "logging_config_3",
            "logging_config_4", "logging_config_5", "unrelated_config_1",
        ]
        engine.remove_config.return_value = True

        removed = hooks.prune_configs()

        assert removed == ["logging_config_2", "logging_config_1"]

    def test_prune_tolerates_in_use_config(self, hooks, engine):
        engine.list_configs.return_value = [f"logging_config_{n}" for n in range(1, 6)]
        engine.remove_config.return_value = False
        assert hooks.prune_configs() == []

    def test_prune_skipped_when_listing_fails(self, hooks, engine):
        engine.list_configs.side_effect = EngineError("ls failed")
        assert hooks.prune_configs() == []
        engine.remove_config.assert_not_called()


# ===========================================================================
# ApplicationStart
# ===========================================================================

class TestApplicationStart:
    """Tests for the deploy hook."""

    def test_application_start(self, hooks, engine, fake_clock, temp_dir):
        manifest = hooks.application_start()

        assert manifest == temp_dir / "staging" / "stack.yml"
        rendered = manifest.read_text()
        assert "name: app-network" in rendered
        assert "tls.crt_1800000000" in rendered
        assert "APP_ENV=staging" in rendered
        engine.stack_deploy.assert_called_once_with(str(manifest), "auth")
        assert fake_clock.sleeps[:2] == [5.0, 10.0]

    def test_source_manifest_not_modified(self, hooks, archive):
        hooks.application_start()
        assert (archive / "stack.yml").read_text() == MANIFEST

    def test_deploy_failure(self, hooks, engine):
        engine.stack_deploy.side_effect = EngineError("deploy failed")
        with pytest.raises(DeploymentError):
            hooks.application_start()

    def test_missing_stack_file(self, hooks, context):
        context.stack_file = "missing.yml"
        with pytest.raises(DeploymentError):
            hooks.application_start()

    def test_waits_while_starting(self, hooks, engine, fake_clock):
        engine.stack_task_states.side_effect = [
            ["Starting 1 second ago"],
            ["Starting 6 seconds ago"],
            ["Running 1 second ago"],
            ["Running 2 seconds ago"],
        ]

        hooks.wait_for_tasks_to_start()

        assert fake_clock.sleeps == [5.0, 5.0]

    def test_stuck_in_starting(self, hooks, engine):
        engine.stack_task_states.return_value = ["Starting 1 second ago"]
        with pytest.raises(DeploymentError):
            hooks.wait_for_tasks_to_start(max_attempts=3)
        assert engine.stack_task_states.call_count == 4

    def test_not_running_after_start(self, hooks, engine):
        engine.stack_task_states.return_value = ["Failed 1 second ago"]
        with pytest.raises(DeploymentError):
            hooks.wait_for_tasks_to_start()


# ===========================================================================
# ValidateService
# ===========================================================================

class TestValidateService:
    """Tests for replica and health validation."""

    def test_all_running_and_healthy(self, hooks, engine):
        engine.stack_task_states.return_value = ["Running 1 minute ago", "Running 1 minute ago"]
        engine.service_containers.return_value = ["c1", "c2"]
        engine.container_health.side_effect = lambda cid: "healthy" if cid == "c1" else "none"

        hooks.validate_service()

        engine.stack_task_states.assert_called_with("auth", desired_running=True)

    def test_replicas_converge(self, hooks, engine, fake_clock):
        engine.stack_task_states.side_effect = [
            [],
            ["Running 1 second ago", "Preparing 1 second ago"],
            ["Running 2 seconds ago", "Running 1 second ago"],
        ]

        assert hooks.wait_for_running_replicas() == 2
        assert fake_clock.sleeps == [10.0, 10.0]

    def test_replicas_timeout(self, hooks, engine, fake_clock):
        engine.stack_task_states.return_value = ["Preparing 1 second ago"]

        with pytest.raises(DeploymentError):
            hooks.wait_for_running_replicas(max_attempts=5)
        assert len(fake_clock.sleeps) == 4

    def test_unhealthy_container_times_out(self, hooks, engine):
        engine.service_containers.return_value = ["c1"]
        engine.container_health.return_value = "unhealthy"

        with pytest.raises(DeploymentError):
            hooks.wait_for_healthy_containers(max_attempts=3)

    def test_starting_container_becomes_healthy(self, hooks, engine, fake_clock):
        engine.service_containers.return_value = ["c1"]
        engine.container_health.side_effect = ["starting", "starting", "healthy"]

        assert hooks.wait_for_healthy_containers() == 1
        assert fake_clock.sleeps == [5.0, 5.0]
