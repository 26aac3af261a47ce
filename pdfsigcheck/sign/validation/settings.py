from dataclasses import dataclass
from typing import FrozenSet, Optional

from pyhanko_certvalidator.policy_decl import DisallowWeakAlgorithmsPolicy

from ...pdf_utils.config_utils import (
    ConfigurableMixin,
    ConfigurationError,
    process_str_list,
)
from ..fields import LocatorStrategy
from .utils import (
    DEFAULT_DSA_KEY_SIZE_THRESHOLD,
    DEFAULT_RSA_KEY_SIZE_THRESHOLD,
    DEFAULT_WEAK_HASH_ALGORITHMS,
)

__all__ = ['VerificationSettings', 'DEFAULT_VERIFICATION_SETTINGS']


def _positive_int(config_dict, key):
    try:
        value = config_dict[key]
    except KeyError:
        return
    if value is None:
        return
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ConfigurationError(
            f"'{key.replace('_', '-')}' must be a positive integer."
        )


@dataclass(frozen=True)
class VerificationSettings(ConfigurableMixin):
    """
    Settings that govern signature verification.
    """

    locator_strategy: LocatorStrategy = LocatorStrategy.STRUCTURAL
    """
    Strategy used to locate signatures in a document.
    """

    weak_hash_algorithms: FrozenSet[str] = DEFAULT_WEAK_HASH_ALGORITHMS
    """
    Digest algorithms that trigger a warning when used in a signature.
    """

    rsa_key_size_threshold: int = DEFAULT_RSA_KEY_SIZE_THRESHOLD
    """
    RSA keys smaller than this size (in bits) trigger a warning.
    """

    dsa_key_size_threshold: int = DEFAULT_DSA_KEY_SIZE_THRESHOLD
    """
    DSA keys smaller than this size (in bits) trigger a warning.
    """

    batch_workers: Optional[int] = None
    """
    Maximal number of documents to verify in parallel. If not set,
    the :mod:`concurrent.futures` default applies.
    """

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)
        strategy = config_dict.pop('locator_strategy', None)
        if strategy is not None:
            try:
                config_dict['locator_strategy'] = LocatorStrategy(strategy)
            except ValueError:
                raise ConfigurationError(
                    f"'{strategy}' is not a valid locator strategy; "
                    f"expected one of "
                    f"{', '.join(s.value for s in LocatorStrategy)}."
                )

        weak_hashes = config_dict.pop('weak_hash_algorithms', None)
        if weak_hashes is not None:
            config_dict['weak_hash_algorithms'] = frozenset(
                s.lower() for s in
                process_str_list(weak_hashes, 'weak-hash-algorithms')
            )

        _positive_int(config_dict, 'rsa_key_size_threshold')
        _positive_int(config_dict, 'dsa_key_size_threshold')
        _positive_int(config_dict, 'batch_workers')

    def algorithm_policy(self) -> DisallowWeakAlgorithmsPolicy:
        return DisallowWeakAlgorithmsPolicy(
            weak_hash_algos=self.weak_hash_algorithms,
            rsa_key_size_threshold=self.rsa_key_size_threshold,
            dsa_key_size_threshold=self.dsa_key_size_threshold,
        )


DEFAULT_VERIFICATION_SETTINGS = VerificationSettings()
