# --- Libraries ---
import asyncio
import logging
from collections import defaultdict

from aiogram import BaseMiddleware, Bot, Dispatcher, F, Router, types
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.fsm.context import FSMContext
from aiogram.fsm.state import State, StatesGroup
from aiogram.fsm.storage.memory import MemoryStorage
from aiogram.types import BotCommand, BufferedInputFile

from config import load_config
from export import build_workbook, sheet_title
from ledger import (
    FORMAT_HELP,
    balance,
    format_amount,
    normalize_name,
    not_found_message,
    parse_entries,
    render_account,
    render_account_list,
    render_report,
)
from storage import (
    AccountNotFound,
    DuplicateAccount,
    LedgerError,
    ValidationError,
    open_store,
)

logger = logging.getLogger(__name__)

router = Router()

ERROR_TEXT = "Sorry, there was an error processing your request."
NO_ACCOUNT_TEXT = (
    "No account selected. Use /new <account_name> to create a new account "
    "or /switch <account_name> to switch to an existing one."
)

WELCOME_TEXT = (
    "Welcome to the Ledger Bot! 💰\n\n"
    "Commands:\n"
    "/new <name> - Create new account\n"
    "/switch <name> - Switch to existing account\n"
    "/list - List all accounts with totals\n"
    "/current - Show current account\n"
    "/delete <name> - Delete an account\n"
    "/clear - Clear current account entries\n"
    "/export - Download current account as Excel\n"
    "/cancel - Cancel account creation\n\n"
    "Usage:\n"
    "1. Create an account: /new groceries\n"
    "2. Add entries, one per line:\n"
    "   milk -25\n"
    "   -15 bread\n"
    "3. Switch accounts: /switch utilities"
)

BOT_COMMANDS = [
    BotCommand(command="start", description="Start bot and show the list of commands"),
    BotCommand(command="new", description="Create new account"),
    BotCommand(command="switch", description="Switch to existing account"),
    BotCommand(command="list", description="List all accounts with totals"),
    BotCommand(command="current", description="Show current account"),
    BotCommand(command="delete", description="Delete an account"),
    BotCommand(command="clear", description="Clear current account entries"),
    BotCommand(command="export", description="Download current account as Excel"),
]


# --- Session states (Idle is the absence of a state) ---
class AccountStates(StatesGroup):
    waiting_for_name = State()  # next plain message names a new account
    account_selected = State()  # entries go to data["account"]


async def current_account(state: FSMContext):
    data = await state.get_data()
    return data.get("account")


async def select_account(state: FSMContext, name: str):
    await state.set_state(AccountStates.account_selected)
    await state.update_data(account=name)


async def restore_state(state: FSMContext):
    """Leave waiting_for_name for whatever state the session had before."""
    if await current_account(state):
        await state.set_state(AccountStates.account_selected)
    else:
        await state.set_state(None)


async def forget_account(state: FSMContext, name: str):
    if await current_account(state) != name:
        return
    await state.update_data(account=None)
    if await state.get_state() == AccountStates.account_selected.state:
        await state.set_state(None)


async def report_error(message: types.Message, error: LedgerError, state: FSMContext = None):
    if isinstance(error, AccountNotFound):
        if state is not None:
            await forget_account(state, error.name)
        text = not_found_message(error.name)
    elif isinstance(error, DuplicateAccount):
        text = f'❌ Account "{error.name}" already exists. Use /switch {error.name} to select it.'
    elif isinstance(error, ValidationError):
        text = f"❌ {error}"
    else:
        logger.error(f"Error processing message: {error}", exc_info=error)
        text = ERROR_TEXT
    await message.answer(text)


# --- Per-user serialization ---
class UserLockMiddleware(BaseMiddleware):
    """Runs updates of one user one at a time, different users concurrently.

    Registered as an outer middleware, so state filters run inside the lock.
    The FSM state is re-read after acquiring it: the one aiogram fetched
    before the lock may be stale if an earlier update changed it.
    """

    def __init__(self):
        self.locks = {}
        self.holders = defaultdict(int)  # users currently waiting or running

    async def __call__(self, handler, event, data):
        user = data.get("event_from_user")
        if user is None:
            return await handler(event, data)

        lock = self.locks.setdefault(user.id, asyncio.Lock())
        self.holders[user.id] += 1
        try:
            async with lock:
                state = data.get("state")
                if state is not None:
                    data["raw_state"] = await state.get_state()
                return await handler(event, data)
        finally:
            self.holders[user.id] -= 1
            if not self.holders[user.id]:
                del self.holders[user.id]
                del self.locks[user.id]


# --- Start ---
@router.message(CommandStart())
@router.message(Command("help"))
async def start(message: types.Message):
    await message.answer(WELCOME_TEXT)


async def create_and_select(message: types.Message, state: FSMContext, store, name: str):
    try:
        await store.create_account(name)
    except LedgerError as e:
        await report_error(message, e)
        return

    await select_account(state, name)
    await message.answer(f'✅ Created new account: "{name}"\nYou can now add entries to this account.')


@router.message(Command("new"))
async def cmd_new(message: types.Message, command: CommandObject, state: FSMContext, store):
    name = normalize_name(command.args or "")
    if not name:
        await state.set_state(AccountStates.waiting_for_name)
        await message.answer("What would you like to name the account?\nSend /cancel to stop.")
        return

    await create_and_select(message, state, store, name)


@router.message(Command("switch"))
async def cmd_switch(message: types.Message, command: CommandObject, state: FSMContext, store):
    name = normalize_name(command.args or "")
    try:
        if not name:
            names = await store.list_account_names()
            if not names:
                await message.answer("No accounts found. Create one with /new <account_name>")
            else:
                listing = "\n".join(f"• {n}" for n in names)
                await message.answer(f"Available accounts:\n{listing}\n\nUsage: /switch <account_name>")
            return

        await store.get_account(name)
    except LedgerError as e:
        await report_error(message, e)
        return

    await select_account(state, name)
    await message.answer(f'📋 Switched to account: "{name}"')


@router.message(Command("list"))
async def cmd_list(message: types.Message, state: FSMContext, store):
    try:
        balances = await store.balances()
    except LedgerError as e:
        await report_error(message, e)
        return

    await message.answer(render_account_list(balances, await current_account(state)))


@router.message(Command("current"))
async def cmd_current(message: types.Message, state: FSMContext, store):
    name = await current_account(state)
    if not name:
        await message.answer("No current account selected. Use /new <account_name> or /switch <account_name>")
        return

    try:
        entries = await store.get_entries(name)
    except LedgerError as e:
        await report_error(message, e, state)
        return

    await message.answer(render_account(name, entries))


@router.message(Command("delete"))
async def cmd_delete(message: types.Message, command: CommandObject, state: FSMContext, store):
    name = normalize_name(command.args or "")
    if not name:
        await message.answer("Please provide an account name. Usage: /delete <account_name>")
        return

    try:
        await store.delete_account(name)
    except LedgerError as e:
        await report_error(message, e)
        return

    await forget_account(state, name)
    await message.answer(f'🗑️ Deleted account: "{name}"')


@router.message(Command("clear"))
async def cmd_clear(message: types.Message, state: FSMContext, store):
    name = await current_account(state)
    if not name:
        await message.answer("No current account selected.")
        return

    try:
        await store.clear_entries(name)
    except LedgerError as e:
        await report_error(message, e, state)
        return

    logger.info(f"User {message.from_user.id} cleared account {name!r}")
    await message.answer(f'🗑️ Cleared all entries from account: "{name}"')


@router.message(Command("cancel"))
async def cmd_cancel(message: types.Message, state: FSMContext):
    if await state.get_state() != AccountStates.waiting_for_name.state:
        await message.answer("Nothing to cancel.")
        return

    await restore_state(state)
    await message.answer("Action cancelled.")


# --- Excel export ---
@router.message(Command("export"))
async def cmd_export(message: types.Message, state: FSMContext, store):
    name = await current_account(state)
    if not name:
        await message.answer(NO_ACCOUNT_TEXT)
        return

    try:
        entries = await store.get_entries(name)
    except LedgerError as e:
        await report_error(message, e, state)
        return

    if not entries:
        await message.answer(render_account(name, entries))
        return

    await message.answer_document(
        BufferedInputFile(build_workbook(name, entries), filename=f"{sheet_title(name)}.xlsx"),
        caption=f'📊 Account "{name}"\n'
                f"Entries: {len(entries)}\n"
                f"Total: {format_amount(balance(entries))}",
    )


# --- Account name input ---
@router.message(AccountStates.waiting_for_name, F.text, ~F.text.startswith("/"))
async def process_account_name(message: types.Message, state: FSMContext, store):
    await restore_state(state)
    await create_and_select(message, state, store, normalize_name(message.text))


# --- Financial entries ---
@router.message(F.text)
async def handle_text(message: types.Message, state: FSMContext, store):
    text = message.text
    if text.startswith("/"):
        await message.answer("Unknown command. Use /help to see available commands.")
        return

    name = await current_account(state)
    if not name:
        await message.answer(NO_ACCOUNT_TEXT)
        return

    parsed = parse_entries(text)
    if parsed is None:
        await message.answer(FORMAT_HELP)
        return

    try:
        await store.append_entries(name, [(p.label, p.signed_amount) for p in parsed])
        entries = await store.get_entries(name)
    except LedgerError as e:
        await report_error(message, e, state)
        return

    logger.info(f"User {message.from_user.id} added {len(parsed)} entries to {name!r}")
    await message.answer(render_report(entries))


def create_dispatcher(store) -> Dispatcher:
    dp = Dispatcher(storage=MemoryStorage(), store=store)
    dp.message.outer_middleware(UserLockMiddleware())
    dp.include_router(router)
    return dp


# --- Startup ---
async def main():
    config = load_config()
    logging.basicConfig(level=config.log_level)

    store = open_store(config)
    await store.init()

    bot = Bot(token=config.bot_token)
    dp = create_dispatcher(store)
    await bot.set_my_commands(BOT_COMMANDS)

    logger.info("Starting ledger bot")
    await dp.start_polling(bot)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
