import argparse
import asyncio
import importlib
import pkgutil
import sys
import time
from pathlib import Path

from pydantic import ValidationError

import services.error  # installs global uncaught-exception hook
import services.helpers as h
import services.logger as log
import services.util as u
import services.config_io as config_io
from services.bridge import Bridge
from services.config_schema import AppConfig
from services.error import BridgeError, UnsupportedContext
from services.events import EventNormalizer
from services.message import Embed, Event, EventKind, InteractionTarget
from services.respond import Responder

import drivers as _drivers_pkg

l = log.get_logger()


def _load_all_drivers() -> None:
    """Import every module in the ``drivers/`` package.

    Each driver module calls ``drivers.registry.register()`` at import time,
    so this one pass is enough to populate the registry.  The ``registry``
    module itself is skipped to avoid a circular bootstrap.
    """
    for _, mod_name, _ in pkgutil.iter_modules(_drivers_pkg.__path__):
        if mod_name != "registry":
            importlib.import_module(f"drivers.{mod_name}")


def cmd_convert(src: str, dst: str) -> None:
    src_path = Path(src)
    dst_path = Path(dst)

    if not src_path.is_file():
        print(f"Error: source file not found: {src_path}", file=sys.stderr)
        sys.exit(1)

    try:
        data = config_io.load_config(src_path)
    except (OSError, ValueError) as e:
        print(f"Error reading {src_path}: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        config_io.save_config(data, dst_path)
    except (OSError, ValueError, TypeError) as e:
        print(f"Error writing {dst_path}: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Converted {src_path} → {dst_path}")


# ----------------------------------------------------------------------
# Example application: ping / test / developer echo mode
# ----------------------------------------------------------------------

def make_handler(responder: Responder, bridge: Bridge, app_cfg: AppConfig):
    dev_mode = False

    async def echo(evt: Event) -> None:
        channel_id = h.get_channel_id(evt)
        if not channel_id:
            return
        embed = Embed(
            title="Event Received",
            description=f"{evt.kind.value} on {evt.platform.value}\n{evt.payload!r}"[:4000],
            color=0x00FF00,
        )
        await responder.send_message(evt.platform, channel_id, "", embed)

    async def ping(evt: Event) -> None:
        start = time.monotonic()
        sent = await responder.respond(evt, "Pinging...")
        latency = int((time.monotonic() - start) * 1000)
        if isinstance(evt.context, InteractionTarget):
            # the interaction response is edited in place
            await responder.respond(evt, f"🏓 Pong! {latency}ms", edit="@original")
        elif sent is not None:
            await responder.respond(evt, f"🏓 Pong! {latency}ms", edit=h.handle_id(sent))

    async def on_event(evt: Event) -> None:
        nonlocal dev_mode
        if h.is_bot_event(evt):
            return
        h.log_event(evt)

        if evt.kind is EventKind.MESSAGE_CREATE:
            text = evt.payload.content
        elif evt.kind is EventKind.INTERACTION_CREATE:
            text = evt.payload.name
        else:
            text = ""

        cmd, _ = h.parse_command(text)
        author = h.get_author(evt)
        try:
            if cmd in ("dev:start", "dev:stop", "enable_dev", "disable_dev"):
                if app_cfg.admins and not h.is_admin(author.id, app_cfg.admins):
                    await responder.respond(evt, "Only admins can toggle developer mode.")
                    return
                dev_mode = cmd in ("dev:start", "enable_dev")
                await responder.respond(
                    evt, "Enabled developer mode." if dev_mode else "Disabled developer mode."
                )
            elif cmd in ("ping", "test"):
                if bridge.cooldown.check(f"{evt.platform.value}:{author.id}:{cmd}", app_cfg.cooldown_seconds):
                    return
                if cmd == "ping":
                    await ping(evt)
                else:
                    await responder.respond(evt, "Received test event!")
            elif dev_mode:
                await echo(evt)
        except UnsupportedContext as e:
            l.debug(f"Not answering {h.get_username(evt)}: {e}")
        except BridgeError as e:
            l.error(f"Failed to answer {evt.kind.value} on {evt.platform.value}: {e}")

    return on_event


async def main():
    log_file = log.setup()
    _load_all_drivers()
    from drivers.registry import all_drivers

    l.info(f"WhiskerBridge starting… (log file: {log_file})")

    config_path = config_io.find_config(Path(u.get_data_path()))
    if config_path is None:
        l.critical(f"No config file found in: {u.get_data_path()} (tried config.json / .yaml / .toml)")
        return

    l.info(f"Loading config from: {config_path}")
    registry = all_drivers()
    raw: dict = config_io.apply_env_overrides(
        config_io.load_config(config_path),
        [p.value.lower() for p in registry],
    )

    bridge = Bridge()
    bridge.load_sensitive_values(raw)

    try:
        app_cfg = AppConfig.model_validate(raw)
    except ValidationError as exc:
        l.critical(f"Config error in application keys:\n{exc}")
        return

    # Validate each platform block via the model its driver registered.
    config_ok = True
    for platform, (config_cls, driver_cls) in registry.items():
        key = platform.value.lower()
        if key not in raw:
            continue
        try:
            cfg = config_cls.model_validate(raw[key])
        except ValidationError as exc:
            l.critical(f"Config error in {key}:\n{exc}")
            config_ok = False
            continue
        bridge.register_driver(driver_cls(cfg))

    if not config_ok:
        return

    drivers = bridge.drivers()
    if not drivers:
        l.error("No platforms configured, exiting.")
        return

    responder = Responder(bridge)
    EventNormalizer(bridge).register(make_handler(responder, bridge, app_cfg))

    def _on_task_done(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            l.error(f"Driver '{task.get_name()}' crashed: {exc}")

    driver_tasks: list[asyncio.Task] = []
    for drv in drivers:
        task = asyncio.create_task(drv.start(), name=drv.platform.value)
        task.add_done_callback(_on_task_done)
        driver_tasks.append(task)
        l.info(f"Started driver: {drv.platform.value}")

    try:
        results = await asyncio.gather(*driver_tasks, return_exceptions=True)
        for task, result in zip(driver_tasks, results):
            if isinstance(result, Exception):
                l.error(f"Driver '{task.get_name()}' exited with error: {result}")
    except asyncio.CancelledError:
        l.info("WhiskerBridge shutting down…")
        for drv in drivers:
            try:
                await drv.close()
            except BridgeError as e:
                l.warning(f"Closing {drv.platform.value} failed: {e}")
        for task in driver_tasks:
            task.cancel()
        await asyncio.gather(*driver_tasks, return_exceptions=True)
        l.info("WhiskerBridge stopped.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(prog="whiskerbridge", description="WhiskerBridge chat-bot adapter")
    subparsers = parser.add_subparsers(dest="command")

    conv = subparsers.add_parser("convert", help="Convert a config file between formats (json/yaml/toml)")
    conv.add_argument("src", help="Source config file (e.g. config.json)")
    conv.add_argument("dst", help="Destination config file (e.g. config.yaml)")

    args = parser.parse_args()

    if args.command == "convert":
        cmd_convert(args.src, args.dst)
        sys.exit(0)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
