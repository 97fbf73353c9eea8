# Shim: canonical entry point lives in patchwright_cli/cli_main.py.
# Kept lazy so `--help` does not import the whole runtime.
import sys


def main(*args, **kwargs):  # noqa: D401
    """Proxy to the canonical CLI entry point."""
    from patchwright_cli.cli_main import main as _main
    return _main(*args, **kwargs)


if __name__ == "__main__":
    raise SystemExit(main(argv=sys.argv[1:]))
