"""Command line interface for testing configuration loading"""
from pathlib import Path

from . import settings_conf, DEFAULTS

SECRET_KEYS = {'jwt_secret', 'db_url'}


def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        if key in SECRET_KEYS:
            value = '********'
        print(f"{key}: {value}")

    # Save example configuration file
    example_path = Path("settings.conf.example")
    if not example_path.exists():
        with open(example_path, "w") as f:
            f.write("[DEFAULT]\n")
            for key, value in DEFAULTS.items():
                f.write(f"{key} = {value}\n")
        print(f"\nWrote {example_path}")


if __name__ == "__main__":
    main()
