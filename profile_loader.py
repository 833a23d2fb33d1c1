"""
Profile loader for legal link scanning.

Loads and validates YAML scan profiles that override the pattern table,
delivery retry policy and debounce window from scanner_config.
"""

from typing import List, Dict, Any, Optional, Tuple
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import ValidationError

import scanner_config
from link_models import DEFAULT_PATTERNS, LinkPattern, build_patterns


@dataclass
class ScanProfile:
    """Settings for one scanning session."""
    patterns: Tuple[LinkPattern, ...] = DEFAULT_PATTERNS
    max_retries: int = scanner_config.MAX_RETRIES
    retry_delay: float = scanner_config.RETRY_DELAY
    debounce_window: float = scanner_config.DEBOUNCE_WINDOW
    fallback_title: str = scanner_config.FALLBACK_PAGE_TITLE
    consumer_url: Optional[str] = None
    headless: bool = scanner_config.HEADLESS
    name: str = "default"
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScanProfile':
        """
        Create a ScanProfile from a dictionary (loaded from YAML).

        Args:
            data: Dictionary from YAML file

        Returns:
            ScanProfile instance

        Raises:
            ValueError: If a field is present but invalid
        """
        profile = cls()
        known = {'name', 'patterns', 'delivery', 'debounce_window',
                 'fallback_title', 'consumer_url', 'headless'}

        if 'name' in data:
            profile.name = str(data['name'])

        # Parse pattern table
        if 'patterns' in data:
            patterns_data = data['patterns']
            if not isinstance(patterns_data, list) or not patterns_data:
                raise ValueError("'patterns' must be a non-empty list")

            entries = []
            for idx, entry in enumerate(patterns_data):
                if not isinstance(entry, dict):
                    raise ValueError(f"'patterns[{idx}]' must be a dictionary")
                keywords = entry.get('keywords')
                if isinstance(keywords, str):
                    keywords = [keywords]
                if not isinstance(keywords, list):
                    raise ValueError(f"'patterns[{idx}].keywords' must be a list")
                if entry.get('type') not in ('policy', 'terms'):
                    raise ValueError(f"Invalid pattern type at patterns[{idx}]: {entry.get('type')}")
                entries.append((keywords, entry['type']))

            try:
                profile.patterns = build_patterns(entries)
            except ValidationError as e:
                raise ValueError(f"Invalid pattern table: {e}") from e

        # Parse delivery config
        if 'delivery' in data:
            delivery_data = data['delivery']
            if not isinstance(delivery_data, dict):
                raise ValueError("'delivery' must be a dictionary")

            max_retries = delivery_data.get('max_retries', profile.max_retries)
            if not isinstance(max_retries, int) or max_retries < 0:
                raise ValueError("'delivery.max_retries' must be a non-negative integer")
            profile.max_retries = max_retries

            retry_delay = delivery_data.get('retry_delay', profile.retry_delay)
            if not isinstance(retry_delay, (int, float)) or retry_delay < 0:
                raise ValueError("'delivery.retry_delay' must be a non-negative number")
            profile.retry_delay = float(retry_delay)

        if 'debounce_window' in data:
            window = data['debounce_window']
            if not isinstance(window, (int, float)) or window <= 0:
                raise ValueError("'debounce_window' must be a positive number")
            profile.debounce_window = float(window)

        if 'fallback_title' in data:
            fallback_title = data['fallback_title']
            if not isinstance(fallback_title, str) or not fallback_title.strip():
                raise ValueError("'fallback_title' must be a non-empty string")
            profile.fallback_title = fallback_title.strip()

        if data.get('consumer_url'):
            profile.consumer_url = str(data['consumer_url'])

        if 'headless' in data:
            profile.headless = bool(data['headless'])

        profile.extra = {k: v for k, v in data.items() if k not in known}
        return profile


def load_profile(file_path: str) -> ScanProfile:
    """
    Load a scan profile from a YAML file.

    Args:
        file_path: Path to YAML profile file

    Returns:
        ScanProfile instance

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If profile is invalid
        yaml.YAMLError: If YAML parsing fails
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"Profile file not found: {file_path}")

    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Profile file must contain a YAML dictionary")

    return ScanProfile.from_dict(data)


def validate_profile(profile: ScanProfile) -> List[str]:
    """
    Validate a profile and return a list of warnings (not errors).

    Args:
        profile: Profile to validate

    Returns:
        List of warning messages (empty if no warnings)
    """
    warnings = []

    if profile.consumer_url and not profile.consumer_url.startswith(('http://', 'https://')):
        warnings.append(f"consumer_url may be invalid (missing http/https): {profile.consumer_url}")

    # Later patterns can never win if an earlier one is a subset of them
    for later_idx, later in enumerate(profile.patterns):
        for earlier in profile.patterns[:later_idx]:
            if set(earlier.keywords) <= set(later.keywords):
                warnings.append(
                    f"Pattern {list(later.keywords)} is shadowed by earlier pattern {list(earlier.keywords)}"
                )
                break

    if profile.max_retries > 10:
        warnings.append(f"max_retries is very high: {profile.max_retries}")

    if profile.debounce_window > 10:
        warnings.append(f"debounce_window is very long: {profile.debounce_window}s")

    if profile.extra:
        warnings.append(f"Unknown profile keys ignored: {', '.join(sorted(profile.extra))}")

    return warnings
