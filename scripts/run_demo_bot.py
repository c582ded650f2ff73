#!/usr/bin/env python3
from __future__ import annotations

import asyncio
import logging

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes

from menumessage import MenuContext, MenuDefinition, MenuRenderResult, MenuState, create_menu_message_plugin
from menumessage.config import load_config, require_env, storage_from_config
from menumessage.models import MenuActionPayload, MenuSession


def _render_main(ctx: MenuContext, state: MenuState, session: MenuSession) -> MenuRenderResult:
    menu = ctx.menu_message
    return MenuRenderResult(
        text=f"Main menu\nscreens in history: {len(session.history)}",
        keyboard=[
            [menu.button("Settings", "open", menu_id="settings")],
            [menu.button("Close", "close")],
        ],
    )


def _render_settings(ctx: MenuContext, state: MenuState, session: MenuSession) -> MenuRenderResult:
    menu = ctx.menu_message
    enabled = bool(state.payload)
    return MenuRenderResult(
        text="Settings\n" + " > ".join(state.path) + f"\nnotifications: {'on' if enabled else 'off'}",
        keyboard=[
            [menu.button("Toggle notifications", "toggle", data="0" if enabled else "1")],
            [menu.button("Back", "back")],
        ],
    )


async def _on_main_action(ctx: MenuContext, action: MenuActionPayload) -> None:
    if action.action == "open":
        await ctx.menu_message.reply(action.menu_id, False)
    elif action.action == "close":
        await ctx.menu_message.clear()


async def _on_settings_action(ctx: MenuContext, action: MenuActionPayload) -> None:
    if action.action == "toggle":
        await ctx.menu_message.edit("settings", action.data == "1")
    elif action.action == "back":
        render = await ctx.menu_message.back()
        current = ctx.menu_message.current()
        if render is None or current is None:
            await ctx.menu_message.reply("main")
            return
        # Show the restored screen in the message that carried the back button.
        await ctx.menu_message.edit(
            current.menu_id,
            current.payload,
            message_id=ctx.update.callback_query.message.message_id,
        )


async def _start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await context.menu_message.reply("main")  # type: ignore[attr-defined]


async def _run() -> None:
    config = load_config()
    token = require_env("MENU_BOT_TOKEN")
    logging.basicConfig(
        level=logging.DEBUG if config.debug_enabled else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    plugin = create_menu_message_plugin(
        storage_from_config(config),
        [
            MenuDefinition(id="main", render=_render_main, on_action=_on_main_action),
            MenuDefinition(id="settings", render=_render_settings, on_action=_on_settings_action),
        ],
        history_limit=config.history_limit,
        namespace=config.namespace,
    )
    app = Application.builder().token(token).build()
    plugin.install(app)
    app.add_handler(CommandHandler("start", _start))
    await app.initialize()
    await app.start()
    await app.updater.start_polling()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await app.updater.stop()
        await app.stop()
        await app.shutdown()


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
