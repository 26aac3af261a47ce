"""
Helpers to populate settings dataclasses from user-provided configuration,
typically a section of the Yaml configuration file.

.. note::
    Keys are written with hyphens in configuration files, and with
    underscores in Python. This module converts between the two.
"""

import dataclasses

__all__ = [
    'ConfigurationError', 'ConfigurableMixin', 'check_config_keys',
    'process_str_list',
]


class ConfigurationError(ValueError):
    """Signal configuration errors."""
    pass


@dataclasses.dataclass(frozen=True)
class ConfigurableMixin:
    """Mixin for settings dataclasses that can be read from configuration."""

    @classmethod
    def process_entries(cls, config_dict):
        """
        Hook to validate and convert raw configuration values before the
        dataclass is instantiated. Keys have already been converted to
        underscore form at this point.

        Subclasses overriding this method should call
        ``super().process_entries()`` and modify ``config_dict`` in place.

        :param config_dict:
            A dictionary containing configuration values.
        :raises ConfigurationError:
            when a value is invalid.
        """
        pass

    @classmethod
    def from_config(cls, config_dict):
        """
        Instantiate the class on which it is called from a configuration
        dictionary.

        Unknown keys are rejected, the remaining entries are run through
        :meth:`process_entries`, and the result is passed to the
        initialiser as keyword arguments. Fields not mentioned in the
        configuration keep their defaults.

        :param config_dict:
            A dictionary containing configuration values.
        :return:
            An instance of the class on which it is called.
        :raises ConfigurationError:
            when an unexpected key is encountered, or when one of the values
            is invalid.
        """
        check_config_keys(
            cls.__name__, {f.name for f in dataclasses.fields(cls)},
            config_dict
        )
        config_dict = {
            key.replace('-', '_'): v for key, v in config_dict.items()
        }
        cls.process_entries(config_dict)
        try:
            return cls(**config_dict)
        except TypeError as e:  # pragma: nocover
            raise ConfigurationError(e)


def _dashed(keys):
    return {key.replace('_', '-') for key in keys}


def check_config_keys(config_name, expected_keys, config_dict):
    """
    Check that ``config_dict`` is a dictionary whose keys all appear
    in ``expected_keys``. Keys are compared in their hyphenated form.
    """
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"{config_name} requires a dictionary to initialise."
        )
    unexpected_keys = _dashed(config_dict.keys()) - _dashed(expected_keys)
    if unexpected_keys:
        raise ConfigurationError(
            f"Unexpected {'key' if len(unexpected_keys) == 1 else 'keys'} "
            f"in configuration for {config_name}: "
            f"{', '.join(sorted(unexpected_keys))}."
        )


def process_str_list(strings, name='value'):
    if isinstance(strings, str):
        return [strings]
    elif isinstance(strings, (list, tuple)) and \
            all(isinstance(s, str) for s in strings):
        return list(strings)
    raise ConfigurationError(
        f"{name} should be specified as a string or a list of strings."
    )
