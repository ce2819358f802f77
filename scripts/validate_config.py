"""
Validate a configuration file and report any issues.

Usage:
    python scripts/validate_config.py configs/solar_system.yaml
"""

import sys
import warnings
from pathlib import Path

# Add src to path so we can import nbody package
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from nbody.config import SimulationParameters
from nbody.errors import ConfigurationError


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/validate_config.py <config_file.yaml>")
        sys.exit(1)

    config_path = sys.argv[1]

    print(f"Validating configuration: {config_path}")
    print("=" * 70)

    try:
        with warnings.catch_warnings(record=True):
            warnings.simplefilter("always")
            params = SimulationParameters.from_yaml(config_path)
        print("[OK] Configuration loaded successfully")
        print()
    except FileNotFoundError as e:
        print(f"[ERROR] {e}")
        sys.exit(1)
    except ConfigurationError as e:
        print("[ERROR] Configuration rejected:")
        for message in str(e).split("; "):
            print(f"  {message}")
        sys.exit(1)

    messages = params.validate()
    warns = [m for m in messages if m.startswith("WARNING")]
    infos = [m for m in messages if m.startswith("INFO")]

    if warns:
        print(f"[WARN] {len(warns)} WARNING(S):")
        for warn in warns:
            print(f"  {warn}")
        print()

    if infos:
        print(f"[INFO] {len(infos)} INFO message(s):")
        for info in infos:
            print(f"  {info}")
        print()

    if not messages:
        print("[OK] All validation checks passed!")
        print()

    print("Configuration summary:")
    print(params)


if __name__ == '__main__':
    main()
