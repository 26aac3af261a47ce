import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import yaml

from pdfsigcheck.pdf_utils.config_utils import (
    ConfigurationError,
    check_config_keys,
)
from pdfsigcheck.pdf_utils.misc import get_and_apply
from pdfsigcheck.sign.validation.settings import (
    DEFAULT_VERIFICATION_SETTINGS,
    VerificationSettings,
)


class StdLogOutput(enum.Enum):
    STDERR = enum.auto()
    STDOUT = enum.auto()


@dataclass(frozen=True)
class LogConfig:
    level: Union[int, str]
    """
    Logging level, should be one of the levels defined in the logging module.
    """

    output: Union[StdLogOutput, str]
    """
    Name of the output file, or a standard one.
    """

    @staticmethod
    def parse_output_spec(spec) -> Union[StdLogOutput, str]:
        if not isinstance(spec, str):
            raise ConfigurationError(
                "Log output must be specified as a string."
            )
        spec_l = spec.lower()
        if spec_l == 'stderr':
            return StdLogOutput.STDERR
        elif spec_l == 'stdout':
            return StdLogOutput.STDOUT
        else:
            return spec


DEFAULT_ROOT_LOGGER_LEVEL = logging.INFO
DEFAULT_REPORT_INDENT = 2


def _default_log_config():
    return {None: LogConfig(DEFAULT_ROOT_LOGGER_LEVEL, StdLogOutput.STDERR)}


@dataclass
class CLIConfig:
    log_config: Dict[Optional[str], LogConfig] = \
        field(default_factory=_default_log_config)
    verification: VerificationSettings = DEFAULT_VERIFICATION_SETTINGS
    report_indent: Optional[int] = DEFAULT_REPORT_INDENT


def _retrieve_log_level(settings_dict, key, default=None) -> Union[int, str]:
    try:
        level_spec = settings_dict[key]
    except KeyError:
        if default is not None:
            return default
        raise ConfigurationError(
            f"Logging config for '{key}' does not define a log level."
        )
    if not isinstance(level_spec, (int, str)):
        raise ConfigurationError(
            f"Log levels must be int or str, not {type(level_spec)}"
        )
    return level_spec


def parse_logging_config(log_config_spec) -> Dict[Optional[str], LogConfig]:
    if not isinstance(log_config_spec, dict):
        raise ConfigurationError('logging config should be a dictionary')
    check_config_keys(
        'logging', ('root-level', 'root-output', 'by-module'), log_config_spec
    )

    root_logger_level = _retrieve_log_level(
        log_config_spec, 'root-level', default=DEFAULT_ROOT_LOGGER_LEVEL
    )

    root_logger_output = get_and_apply(
        log_config_spec, 'root-output', LogConfig.parse_output_spec,
        default=StdLogOutput.STDERR
    )

    log_config = {None: LogConfig(root_logger_level, root_logger_output)}

    logging_by_module = log_config_spec.get('by-module', {})
    if not isinstance(logging_by_module, dict):
        raise ConfigurationError('logging.by-module should be a dict')

    for module, module_logging_settings in logging_by_module.items():
        if not isinstance(module, str):
            raise ConfigurationError(
                "Keys in logging.by-module should be strings"
            )
        if not isinstance(module_logging_settings, dict):
            raise ConfigurationError(
                f"Logging config for '{module}' should be a dictionary"
            )
        level_spec = _retrieve_log_level(module_logging_settings, 'level')
        output_spec = get_and_apply(
            module_logging_settings, 'output', LogConfig.parse_output_spec,
            default=StdLogOutput.STDERR
        )
        log_config[module] = LogConfig(level=level_spec, output=output_spec)

    return log_config


def parse_cli_config(yaml_str) -> CLIConfig:
    try:
        config_dict = yaml.safe_load(yaml_str) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse configuration file: {e}")
    return CLIConfig(**process_config_dict(config_dict))


def process_config_dict(config_dict: dict) -> dict:
    check_config_keys(
        'CLIConfig', ('logging', 'verification', 'report-indent'), config_dict
    )

    # logging config
    log_config_spec = config_dict.get('logging', {})
    log_config = parse_logging_config(log_config_spec)

    verification_spec = config_dict.get('verification', None)
    if verification_spec is None:
        verification = DEFAULT_VERIFICATION_SETTINGS
    else:
        verification = VerificationSettings.from_config(verification_spec)

    report_indent = config_dict.get('report-indent', DEFAULT_REPORT_INDENT)
    if report_indent is not None and (
            not isinstance(report_indent, int)
            or isinstance(report_indent, bool) or report_indent < 0):
        raise ConfigurationError(
            "report-indent must be a non-negative integer."
        )

    return {
        'log_config': log_config,
        'verification': verification,
        'report_indent': report_indent,
    }
