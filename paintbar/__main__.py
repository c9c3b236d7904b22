"""
Paintbar project storage API
"""

import argparse
import asyncio
import inspect
import json
import logging
import os
import secrets
import sys
from enum import Enum
from pathlib import Path
from typing import Iterator

import uvicorn
from uvicorn.config import LOGGING_CONFIG

from paintbar.config import ENV_PREFIX, AuthOptions, Settings, get_settings, validate_settings
from paintbar.connections import es, paintbar_connections
from paintbar.systemdata.manage import create_or_update_indices, delete_indices


async def _check_elastic_connection():
    async with paintbar_connections():
        if await es().ping():
            logging.info(f"Connect to elasticsearch {get_settings().elastic_host}")


def run(args):
    auth = get_settings().auth
    logging.info(f"Starting server at port {args.port}, debug={not args.nodebug}, auth={auth}")
    if auth == AuthOptions.no_auth:
        logging.warning(
            "Warning: No authentication is set up - everyone who can access this service can act as any owner"
        )
    if message := validate_settings():
        logging.warning(message)
    logging.info(
        "To change server config, create an .env file and/or set environment parameters,\n"
        f"{' ' * 26}see paintbar/config.py for more information.\n"
        f"{' ' * 26}You can also run `python -m paintbar config --write` to create an .env file with the current settings\n"
    )

    asyncio.run(_check_elastic_connection())
    log_config = "logging.yml" if Path("logging.yml").exists() else LOGGING_CONFIG
    uvicorn.run("paintbar.api:app", host="0.0.0.0", reload=not args.nodebug, port=int(args.port), log_config=log_config)


async def create_indices(_args) -> None:
    async with paintbar_connections():
        for index in await create_or_update_indices():
            print(f"Index {index} is up to date")


async def dangerously_delete_indices(args) -> None:
    if not args.yes:
        logging.error("This deletes all project metadata. Add --yes if you are sure")
        sys.exit(1)
    async with paintbar_connections():
        await delete_indices()


def base_env():
    return {f"{ENV_PREFIX}jwt_secret": secrets.token_hex(nbytes=32)}


def create_env(args):
    if os.path.exists(".env"):
        print("*** File .env already exists, quitting ***")
        sys.exit(1)

    env = base_env()
    if args.s3_host:
        env[f"{ENV_PREFIX}s3_host"] = args.s3_host
    with open(".env", "w") as f:
        for key, val in env.items():
            f.write(f"{key}={val}\n")
    os.chmod(".env", 0o600)
    print("*** Created .env file ***")


def config_paintbar(args):
    """Print the current settings in .env format, or write them to the env file with --write"""
    settings = get_settings()
    lines = list(env_lines(settings))
    if not args.write:
        print("\n".join(lines))
        return
    if settings.env_file.exists() and not args.force:
        print(f"*** File {settings.env_file} already exists, use --force to overwrite ***")
        sys.exit(1)
    settings.env_file.write_text("\n".join(lines) + "\n")
    os.chmod(settings.env_file, 0o600)
    print(f"*** Written settings to {settings.env_file} ***")


def env_lines(settings: Settings) -> Iterator[str]:
    """Settings as .env lines, each preceded by its description. Unset settings are commented out."""
    for fieldname, fieldinfo in type(settings).model_fields.items():
        if fieldname == "env_file":
            continue
        if fieldinfo.description:
            yield f"# {fieldinfo.description}"
        if fieldname == "auth":
            for option in AuthOptions:
                yield f"#   {option.value}: {(option.__doc__ or '').strip()}"
        value = getattr(settings, fieldname)
        if value is None:
            yield f"#{ENV_PREFIX}{fieldname}="
        elif isinstance(value, Enum):
            yield f"{ENV_PREFIX}{fieldname}={value.value}"
        elif isinstance(value, list):
            # pydantic-settings reads list settings as json
            yield f"{ENV_PREFIX}{fieldname}={json.dumps(value)}"
        else:
            yield f"{ENV_PREFIX}{fieldname}={value}"
        yield ""


def main():
    parser = argparse.ArgumentParser(description=__doc__, prog="python -m paintbar")

    subparsers = parser.add_subparsers(dest="action", title="action", help="Action to perform:", required=True)
    p = subparsers.add_parser("run", help="Run the backend API in development mode")
    p.add_argument(
        "--no-debug",
        action="store_true",
        dest="nodebug",
        help="Disable debug mode (useful for testing downstream clients)",
    )
    p.add_argument("-p", "--port", help="Port", default=5000)
    p.set_defaults(func=run)

    p = subparsers.add_parser("create-env", help="Create the .env file with a random jwt secret")
    p.add_argument("--s3-host", help="Endpoint of the S3 compatible object store")
    p.set_defaults(func=create_env)

    p = subparsers.add_parser("config", help="Show the current settings in .env format")
    p.add_argument("--write", action="store_true", help="Write the settings to the env file instead of printing them")
    p.add_argument("--force", action="store_true", help="Overwrite an existing env file")
    p.set_defaults(func=config_paintbar)

    p = subparsers.add_parser("create-indices", help="Create the project indices, or update their mappings")
    p.set_defaults(func=create_indices)

    p = subparsers.add_parser(
        "dangerously-delete-indices",
        help="DANGER: Delete the project indices and all project metadata. Images in the object store are kept.",
    )
    p.add_argument("--yes", action="store_true", help="Confirm that you really want to delete the indices")
    p.set_defaults(func=dangerously_delete_indices)

    args = parser.parse_args()

    logging.basicConfig(format="[%(levelname)-7s:%(name)-15s] %(message)s", level=logging.INFO)
    es_logger = logging.getLogger("elasticsearch")
    es_logger.setLevel(logging.WARNING)

    if inspect.iscoroutinefunction(args.func):
        asyncio.run(args.func(args))
    else:
        args.func(args)


if __name__ == "__main__":
    main()
