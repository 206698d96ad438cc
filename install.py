#!/usr/bin/env python3
"""Bootstrap a local guru-gateway checkout.

Usage:
    python install.py          # Runtime install
    python install.py --dev    # Editable install with pytest
"""

import os
import platform
import shutil
import subprocess
import sys

MIN_PYTHON = (3, 11)
CONFIG_TEMPLATES = [("config.example.yaml", "config.yaml"), (".env.example", ".env")]


def _venv_paths(project_dir: str) -> tuple[str, str, str]:
    venv_dir = os.path.join(project_dir, ".venv")
    bin_dir = "Scripts" if platform.system() == "Windows" else "bin"
    return venv_dir, os.path.join(venv_dir, bin_dir, "pip"), os.path.join(venv_dir, bin_dir, "guru-gateway")


def _copy_templates(project_dir: str) -> None:
    for src, dst in CONFIG_TEMPLATES:
        src_path = os.path.join(project_dir, src)
        dst_path = os.path.join(project_dir, dst)
        if os.path.exists(dst_path):
            print(f"{dst} already exists, skipping.")
        elif os.path.exists(src_path):
            shutil.copy(src_path, dst_path)
            print(f"Created {dst} from {src}")


def main() -> None:
    if sys.version_info < MIN_PYTHON:
        sys.exit(
            f"Error: Python {MIN_PYTHON[0]}.{MIN_PYTHON[1]}+ is required. "
            f"You have {sys.version_info.major}.{sys.version_info.minor}."
        )

    dev = "--dev" in sys.argv
    project_dir = os.path.dirname(os.path.abspath(__file__))
    venv_dir, pip, cli = _venv_paths(project_dir)

    if not os.path.isdir(venv_dir):
        print("Creating virtual environment...")
        subprocess.check_call([sys.executable, "-m", "venv", venv_dir])

    subprocess.check_call([pip, "install", "--upgrade", "pip"])
    target = ".[dev]" if dev else "."
    print(f"Installing guru-gateway ({'editable, with test tools' if dev else 'runtime'})...")
    subprocess.check_call([pip, "install", *(["-e"] if dev else []), target], cwd=project_dir)

    # SQLite file and schema are created on first start
    os.makedirs(os.path.join(project_dir, "data"), exist_ok=True)
    _copy_templates(project_dir)

    config_path = os.path.join(project_dir, "config.yaml")
    if subprocess.call([cli, "config-check", "-c", config_path], cwd=project_dir) != 0:
        print("config.yaml did not validate; fix it before starting a chat.")

    activate_cmd = r".\.venv\Scripts\activate" if platform.system() == "Windows" else "source .venv/bin/activate"
    print()
    print("Next steps:")
    print("  1. Set ANTHROPIC_API_KEY in .env")
    print("  2. Adjust quota tiers and context limits in config.yaml")
    print(f"  3. {activate_cmd}")
    print("  4. guru-gateway chat -u <user-id> -p deals")
    print("  5. guru-gateway usage-report -u <user-id> --days 7")


if __name__ == "__main__":
    main()
