#!/usr/bin/env python
"""
The main module provides the executable entrypoint for the IBM VPC Block CSI
driver operator
"""

# Standard
from typing import Dict, List
import argparse

# First Party
import aconfig
import alog

# Local
from .cmd import RunOperatorCmd
from .config import library_config
from .log_format import OperatorJsonFormatter

## Constants ###################################################################

log = alog.use_channel("MAIN")

## Helpers #####################################################################


def add_library_config_args(
    parser, config_obj=None, path: List[str] = None
) -> Dict[str, List[str]]:
    """Add a --key.subkey override arg for every leaf of the library config

    Returns:
        setters:  Dict[str, List[str]]
            Mapping from the argparse destination to the config key path
    """
    path = path or []
    setters = {}
    config_obj = config_obj if config_obj is not None else library_config
    for key, val in config_obj.items():
        sub_path = path + [key]
        if isinstance(val, aconfig.AttributeAccessDict):
            setters.update(
                add_library_config_args(parser, config_obj=val, path=sub_path)
            )
            continue

        arg_name = ".".join(sub_path)
        dest_name = "_".join(sub_path)
        kwargs = {
            "default": val,
            "dest": dest_name,
            "help": f"Library config override for {arg_name}",
        }
        if isinstance(val, list):
            kwargs["nargs"] = "*"
        elif isinstance(val, bool):
            kwargs["action"] = "store_true"
        elif val is not None:
            kwargs["type"] = type(val)
        parser.add_argument(f"--{arg_name}", **kwargs)
        setters[dest_name] = sub_path
    return setters


def update_library_config(args: argparse.Namespace, setters: Dict[str, List[str]]):
    """Write the parsed overrides back into the library config"""
    for dest_name, config_path in setters.items():
        config_obj = library_config
        for key in config_path[:-1]:
            config_obj = config_obj[key]
        config_obj[config_path[-1]] = getattr(args, dest_name)


## Main ########################################################################


def main(argv: List[str] = None):
    """Parse the command line, reconfigure logging, and run the command"""
    parser = argparse.ArgumentParser(description=__doc__)
    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    run_operator_cmd = RunOperatorCmd()
    run_parser = run_operator_cmd.add_subparser(subparsers)
    run_parser.set_defaults(func=run_operator_cmd.cmd)
    library_config_setters = add_library_config_args(
        run_parser.add_argument_group("Library Configuration")
    )

    # "run" is the default command
    check_parser = argparse.ArgumentParser(add_help=False)
    check_parser.add_argument("command", nargs="?")
    check_args, _ = check_parser.parse_known_args(argv)
    if check_args.command not in subparsers.choices:
        args = run_parser.parse_args(argv)
    else:
        args = parser.parse_args(argv)

    update_library_config(args, library_config_setters)

    alog.configure(
        default_level=library_config.log_level,
        filters=library_config.log_filters,
        formatter=OperatorJsonFormatter() if library_config.log_json else "pretty",
        thread_id=library_config.log_thread_id,
    )

    args.func(args)


if __name__ == "__main__":  # pragma: no cover
    main()
