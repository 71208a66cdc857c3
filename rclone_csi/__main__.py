import sys
import argparse
from easypy.bunch import Bunch


def main():
    parser = argparse.ArgumentParser(
        description="rclone CSI Plugin")
    parser.set_defaults(func=lambda *_, **__: parser.print_help())

    subparsers = parser.add_subparsers()

    serve_parse = subparsers.add_parser("serve", help='Start the CSI Plugin Server (not for humans)')
    serve_parse.set_defaults(func=_serve)

    info_parse = subparsers.add_parser("info", help='Print versioning information for this CSI plugin')
    info_parse.add_argument("--output", default="json", choices=['json', 'yaml'], help="Output format")
    info_parse.set_defaults(func=_info)

    args_parse = subparsers.add_parser(
        "mount-args", help='Print the rclone command line a mounter would run for a volume')
    args_parse.add_argument("volume_id")
    args_parse.add_argument("remote")
    args_parse.add_argument("path")
    args_parse.add_argument("target_path")
    args_parse.add_argument(
        "-o", "--flag", dest="flags", action="append", default=[], metavar="NAME[=VALUE]",
        help="Override or add an rclone mount flag (repeatable)")
    args_parse.set_defaults(func=_mount_args)

    test_parse = subparsers.add_parser("test", help='Start unit tests')
    test_parse.set_defaults(func=_test)

    args = parser.parse_args(namespace=Bunch())
    args.pop("func")(args)


def _info(args):
    from . configuration import Config
    conf = Config()
    info = dict(
        name=conf.plugin_name, version=conf.plugin_version, commit=conf.git_commit,
        rclone_image=conf.rclone_image,
    )
    if args.output == "yaml":
        import yaml
        yaml.dump(info, sys.stdout)
    elif args.output == "json":
        import json
        json.dump(info, sys.stdout)
    else:
        assert False, f"invalid output format: {args.output}"


def _mount_args(args):
    from shlex import join
    from . volume import RcloneVolume
    from . rclone import compose_mount_args

    overrides = dict(flag.partition("=")[::2] for flag in args.flags)
    volume = RcloneVolume(id=args.volume_id, remote=args.remote, remote_path=args.path)
    print(join(["rclone", *compose_mount_args(volume, args.target_path, overrides)]))


def _test(args):
    """Runs the tests without code coverage"""
    import pytest
    sys.exit(pytest.main(["-x", "tests", "-s", "-v"]))


def _serve(args):
    from . server import serve
    return serve()


if __name__ == '__main__':
    main()
