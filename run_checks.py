"""Run the pystreams lint, type and test checks through uv.

Each tool's output goes to its own file under ``check-output/``.
Pass tool names (ruff, mypy, pytest) to run a subset.
"""
import subprocess
import sys
from pathlib import Path

OUTPUT_DIR = Path("check-output")

CHECKS = {
    "ruff": ["uv", "run", "ruff", "check", "src/pystreams", "tests"],
    "mypy": ["uv", "run", "mypy", "src/pystreams"],
    "pytest": ["uv", "run", "pytest", "-q", "tests"],
}


def run_check(name, command):
    output_file = OUTPUT_DIR / f"{name}.txt"
    print(f"[{name}] {' '.join(command)}")
    try:
        with open(output_file, "w") as f:
            result = subprocess.run(command, stdout=f, stderr=subprocess.STDOUT, text=True)
    except OSError as e:
        print(f"[{name}] could not start: {e}")
        return 1
    status = "ok" if result.returncode == 0 else f"failed ({result.returncode}), see {output_file}"
    print(f"[{name}] {status}")
    return result.returncode


def main(argv):
    selected = argv or list(CHECKS)
    unknown = [name for name in selected if name not in CHECKS]
    if unknown:
        print(f"unknown check(s): {', '.join(unknown)}; choose from {', '.join(CHECKS)}")
        return 2
    OUTPUT_DIR.mkdir(exist_ok=True)
    failed = [name for name in selected if run_check(name, CHECKS[name]) != 0]
    if failed:
        print(f"\nFailed: {', '.join(failed)}")
        return 1
    print("\nAll checks passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
