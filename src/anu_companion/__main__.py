import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from anu_companion.app_config import load_json_config, parse_app_config, resolve_runtime_env
from anu_companion.bootstrap import bootstrap_runtime


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app.provider_name)
    if not env.provider_api_key:
        print(f"{env.provider_env_var} environment variable is required.", file=sys.stderr)
        sys.exit(1)

    runtime = bootstrap_runtime(app, env)
    companion = runtime.companion

    print("anu-companion (type 'exit' to quit, '/help' for commands)")
    print(f"Model: {app.provider_name}/{app.model} | Plan: {app.subscription_tier}")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()
    companion.begin()

    try:
        while True:
            try:
                user_input = await asyncio.to_thread(input, "you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            try:
                print()
                await companion.run(trimmed)
                print()
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await companion.shutdown()
        runtime.memory_store.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
