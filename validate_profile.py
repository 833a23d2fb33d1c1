"""
Simple script to validate a scan profile file.

Usage:
    python validate_profile.py profiles/default.yaml
"""

import sys
import logging

from profile_loader import load_profile, validate_profile

logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')
logger = logging.getLogger(__name__)


def main():
    if len(sys.argv) < 2:
        print("Usage: python validate_profile.py <profile_file>")
        sys.exit(1)

    profile_file = sys.argv[1]

    try:
        logger.info(f"Loading profile: {profile_file}")
        profile = load_profile(profile_file)

        logger.info("✓ Profile loaded successfully")
        logger.info(f"  Name: {profile.name}")
        logger.info(f"  Patterns: {len(profile.patterns)}")
        for idx, pattern in enumerate(profile.patterns, 1):
            logger.info(f"    {idx}. {' + '.join(pattern.keywords)} -> {pattern.type.value}")

        logger.info(f"  Retries: {profile.max_retries} (delay {profile.retry_delay}s)")
        logger.info(f"  Debounce window: {profile.debounce_window}s")
        logger.info(f"  Fallback title: {profile.fallback_title}")
        logger.info(f"  Consumer: {profile.consumer_url or 'in-memory'}")

        # Validate
        warnings = validate_profile(profile)
        if warnings:
            logger.warning("Validation warnings:")
            for warning in warnings:
                logger.warning(f"  - {warning}")
        else:
            logger.info("✓ No validation warnings")

        logger.info("")
        logger.info("Profile is valid and ready to use!")
        logger.info(f"Run with: python link_scanner.py watch <url> --profile {profile_file}")

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        sys.exit(1)
    except ValueError as e:
        logger.error(f"Invalid profile: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
