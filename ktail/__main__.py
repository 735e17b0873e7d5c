"""
CLI entry point, when used as a module: `python -m ktail`.

Useful for debugging in the IDEs (use the start-mode "Module", module "ktail").
"""
from ktail import cli

if __name__ == '__main__':
    cli.main()
