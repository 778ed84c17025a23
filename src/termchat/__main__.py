import asyncio

from dotenv import load_dotenv
from loguru import logger

from termchat.app_config import load_json_config, parse_app_config, resolve_data_path
from termchat.bootstrap import bootstrap_runtime
from termchat.commands.input_parser import parse_input_line
from termchat.models import Command

_USER_PROMPT = "you> "


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    runtime = bootstrap_runtime(app)
    session = runtime.session

    print(f"termchat (type '{app.cmd_prefix}help' for commands, '{app.cmd_prefix}quit' to exit)")
    print(f"Backend: {app.backend_name}")
    print(f"Messages: {resolve_data_path(app.store_db_path)}")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    loop_task = asyncio.create_task(session.run(), name="termchat-session")
    if app.auto_connect:
        session.post_command(Command.of("login"))

    try:
        while not loop_task.done():
            try:
                user_input = await asyncio.to_thread(input, _USER_PROMPT)
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break

            command, error = parse_input_line(
                trimmed,
                cmd_prefix=app.cmd_prefix,
                selected_chat_id=session.selected_chat_id,
            )
            if error is not None:
                runtime.ui.print_text(error)
                continue
            if command is None:
                continue

            session.post_command(command)
            if command.name in ("quit", "exit"):
                break
    finally:
        session.stop()
        try:
            await loop_task
        except Exception as ex:
            logger.error(f"Session loop ended with an error: {ex}")
        runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
