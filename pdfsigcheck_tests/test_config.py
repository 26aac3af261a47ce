import pytest

from pdfsigcheck import config
from pdfsigcheck.config import (
    DEFAULT_REPORT_INDENT,
    DEFAULT_ROOT_LOGGER_LEVEL,
    StdLogOutput,
)
from pdfsigcheck.pdf_utils.config_utils import ConfigurationError
from pdfsigcheck.sign.fields import LocatorStrategy
from pdfsigcheck.sign.validation.settings import (
    DEFAULT_VERIFICATION_SETTINGS,
    VerificationSettings,
)


def test_empty_config():
    cli_config: config.CLIConfig = config.parse_cli_config("")
    assert cli_config.verification == DEFAULT_VERIFICATION_SETTINGS
    assert cli_config.report_indent == DEFAULT_REPORT_INDENT
    assert cli_config.log_config[None].level == DEFAULT_ROOT_LOGGER_LEVEL


def test_read_verification_config():
    config_string = """
    verification:
        locator-strategy: positional
        weak-hash-algorithms: [SHA1, md5]
        rsa-key-size-threshold: 3072
        dsa-key-size-threshold: 3072
        batch-workers: 4
    report-indent: 4
    """
    cli_config: config.CLIConfig = config.parse_cli_config(config_string)
    settings = cli_config.verification
    assert settings.locator_strategy == LocatorStrategy.POSITIONAL
    assert settings.weak_hash_algorithms == frozenset({'sha1', 'md5'})
    assert settings.rsa_key_size_threshold == 3072
    assert settings.dsa_key_size_threshold == 3072
    assert settings.batch_workers == 4
    assert cli_config.report_indent == 4

    policy = settings.algorithm_policy()
    assert policy.weak_hash_algos == frozenset({'sha1', 'md5'})
    assert policy.rsa_key_size_threshold == 3072
    assert policy.dsa_key_size_threshold == 3072


def test_read_verification_config_single_hash():
    settings = VerificationSettings.from_config(
        {'weak-hash-algorithms': 'sha1'}
    )
    assert settings.weak_hash_algorithms == frozenset({'sha1'})
    assert settings.locator_strategy == LocatorStrategy.STRUCTURAL
    assert settings.batch_workers is None


def test_default_key_size_thresholds():
    policy = DEFAULT_VERIFICATION_SETTINGS.algorithm_policy()
    assert policy.rsa_key_size_threshold == 2048
    assert policy.dsa_key_size_threshold == 2048


def test_compact_report():
    cli_config = config.parse_cli_config("report-indent: null")
    assert cli_config.report_indent is None


WRONG_VERIFICATION_CONFIGS = [
    "verification: 5",
    """
    verification:
        locator-strategy: guesswork
    """,
    """
    verification:
        weak-hash-algorithms: [1, 2]
    """,
    """
    verification:
        rsa-key-size-threshold: -1
    """,
    """
    verification:
        dsa-key-size-threshold: 0
    """,
    """
    verification:
        batch-workers: many
    """,
    """
    verification:
        batch-workers: true
    """,
    """
    verification:
        no-such-setting: 1
    """,
    "report-indent: -2",
    "report-indent: abc",
    "no-such-section: 1",
    "[1, 2, 3]",
    "{unbalanced",
]


@pytest.mark.parametrize('config_str', WRONG_VERIFICATION_CONFIGS)
def test_read_verification_config_errors(config_str):
    with pytest.raises(ConfigurationError):
        config.parse_cli_config(config_str)


def test_read_logging_config():
    config_string = """
    logging:
        root-level: DEBUG
        root-output: stdout
        by-module:
            pdfsigcheck.sign:
                level: 50
                output: test.log
            pdfsigcheck.pdf_utils:
                level: DEBUG
            pdfsigcheck.cli:
                level: 10
                output: stderr
    """
    cli_config: config.CLIConfig = config.parse_cli_config(config_string)

    assert cli_config.log_config[None].output == StdLogOutput.STDOUT
    assert cli_config.log_config[None].level == 'DEBUG'

    assert cli_config.log_config['pdfsigcheck.sign'].level == 50
    assert cli_config.log_config['pdfsigcheck.sign'].output == 'test.log'
    assert cli_config.log_config['pdfsigcheck.pdf_utils'].level == 'DEBUG'
    assert cli_config.log_config['pdfsigcheck.pdf_utils'].output \
        == StdLogOutput.STDERR
    assert cli_config.log_config['pdfsigcheck.cli'].level == 10
    assert cli_config.log_config['pdfsigcheck.cli'].output \
        == StdLogOutput.STDERR


def test_read_logging_config_defaults():
    cli_config: config.CLIConfig = config.parse_cli_config("""
        logging:
            root-level: DEBUG
    """)

    assert cli_config.log_config[None].output == StdLogOutput.STDERR
    assert cli_config.log_config[None].level == 'DEBUG'
    assert list(cli_config.log_config.keys()) == [None]

    cli_config: config.CLIConfig = config.parse_cli_config("""
        logging:
            root-output: 'test.log'
    """)

    assert cli_config.log_config[None].output == 'test.log'
    assert cli_config.log_config[None].level == DEFAULT_ROOT_LOGGER_LEVEL
    assert list(cli_config.log_config.keys()) == [None]


WRONG_LOGGING_CONFIGS = [
    # a bunch of type errors
    "logging: 5",
    """
    logging:
        by-module: 1
    """,
    """
    logging:
        root-output: [1, 2]
    """,
    """
    logging:
        root-level: [2, 3]
    """,
    """
    logging:
        by-module:
            test.example:
                level: 10
                output: 5
    """,
    """
    logging:
        by-module:
            0:
                level: 10
    """,
    # level is required for non-root logging specs
    """
    logging:
        by-module:
            test.example:
                output: 'abc.log'
    """,
    """
    logging:
        root-colour: red
    """,
]


@pytest.mark.parametrize('config_str', WRONG_LOGGING_CONFIGS)
def test_read_logging_config_errors(config_str):
    with pytest.raises(ConfigurationError):
        config.parse_cli_config(config_str)
