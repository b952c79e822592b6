"""Tests for input loading."""

import pytest

from registry_cleanup.config import load_inputs, parse_bool, split_list
from registry_cleanup.core.types import RegistryType
from registry_cleanup.exceptions import ConfigurationError


def test_inputs_from_environment():
    """Test INPUT_* variables as written by workflow runners."""
    environ = {
        "INPUT_REGISTRY-TYPE": "ghcr",
        "INPUT_TOKEN": "ghp_token",
        "INPUT_OWNER": "octo",
        "INPUT_PACKAGES": "api, web ,,worker",
        "INPUT_EXCLUDE-TAGS": "latest,v*",
        "INPUT_KEEP-N-TAGGED": "3",
        "INPUT_DRY-RUN": "true",
        "INPUT_OLDER-THAN": "2w",
    }

    inputs = load_inputs([], environ)

    assert inputs.provider_config.registry_type == RegistryType.GHCR
    assert inputs.provider_config.owner == "octo"
    assert inputs.packages == ["api", "web", "worker"]
    assert inputs.cleanup_config.exclude_tags == ("latest", "v*")
    assert inputs.cleanup_config.keep_n_tagged == 3
    assert inputs.cleanup_config.keep_n_untagged is None
    assert inputs.cleanup_config.dry_run is True
    assert inputs.cleanup_config.older_than == "2w"
    assert inputs.cleanup_config.retry == 3
    assert inputs.cleanup_config.throttle == 1000
    assert inputs.timeout == 30


def test_underscore_environment_names():
    """Test the shell friendly INPUT_NAME_WITH_UNDERSCORES spelling."""
    environ = {
        "INPUT_REGISTRY_TYPE": "oci",
        "INPUT_REGISTRY_URL": "registry.example.com",
        "INPUT_REGISTRY_USERNAME": "me",
        "INPUT_REGISTRY_PASSWORD": "secret",
        "INPUT_PACKAGE": "team/app",
        "INPUT_DELETE_UNTAGGED": "yes",
    }

    inputs = load_inputs([], environ)

    assert inputs.provider_config.username == "me"
    assert inputs.provider_config.password == "secret"
    assert inputs.packages == ["team/app"]
    assert inputs.cleanup_config.delete_untagged is True


def test_flags_override_environment():
    """Test that command-line flags win over INPUT_* values."""
    environ = {"INPUT_REGISTRY-TYPE": "ghcr", "INPUT_TOKEN": "env", "INPUT_RETRY": "9"}

    inputs = load_inputs(
        ["--token", "cli", "--owner", "octo", "--retry", "1", "--throttle", "50"],
        environ,
    )

    assert inputs.provider_config.token == "cli"
    assert inputs.cleanup_config.retry == 1
    assert inputs.cleanup_config.throttle == 50


@pytest.mark.parametrize(
    "var", ["GITEA_ACTOR", "GITHUB_ACTOR", "GITHUB_REPOSITORY_OWNER"]
)
def test_owner_falls_back_to_actor(var):
    """Test owner resolution from CI actor variables."""
    environ = {"INPUT_REGISTRY-TYPE": "ghcr", "INPUT_TOKEN": "t", var: "someone"}

    inputs = load_inputs([], environ)

    assert inputs.provider_config.owner == "someone"


def test_debug_variables_enable_verbose():
    """Test runner debug flags."""
    environ = {
        "INPUT_REGISTRY-TYPE": "ghcr",
        "INPUT_TOKEN": "t",
        "INPUT_OWNER": "octo",
        "ACTIONS_STEP_DEBUG": "true",
    }

    inputs = load_inputs([], environ)

    assert inputs.debug is True
    assert inputs.verbose is True
    assert inputs.cleanup_config.verbose is True


def test_missing_registry_type():
    """Test that registry-type is mandatory."""
    with pytest.raises(ConfigurationError, match="registry-type is required"):
        load_inputs([], {})


def test_invalid_registry_type():
    """Test rejection of unknown backends."""
    with pytest.raises(ConfigurationError, match="Invalid registry-type"):
        load_inputs(["--registry-type", "quay"], {})


@pytest.mark.parametrize(
    "argv,message",
    [
        (["--registry-type", "ghcr", "--owner", "octo"], "token is required"),
        (["--registry-type", "oci", "--token", "t", "--package", "a"], "registry-url"),
        (["--registry-type", "ghcr", "--token", "t"], "packages or owner"),
        (
            ["--registry-type", "ghcr", "--token", "t", "--owner", "o", "--older-than", "soon"],
            "older-than",
        ),
    ],
)
def test_invalid_inputs(argv, message):
    """Test validation of loaded inputs."""
    with pytest.raises(ConfigurationError, match=message):
        load_inputs(argv, {})


def test_negative_keep_count():
    """Test that negative retention counts are rejected."""
    argv = ["--registry-type", "ghcr", "--token", "t", "--owner", "o", "--keep-n-tagged=-1"]

    with pytest.raises(ConfigurationError, match="keep-n-tagged"):
        load_inputs(argv, {})


def test_parse_bool_and_split_list():
    """Test input value helpers."""
    assert parse_bool("True")
    assert parse_bool(" 1 ")
    assert not parse_bool("false")
    assert not parse_bool(None)
    assert split_list(" a, b,,c ") == ["a", "b", "c"]
    assert split_list(None) == []
