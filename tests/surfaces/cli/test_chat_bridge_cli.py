import asyncio
import json
from pathlib import Path

from typer.testing import CliRunner

from chat_bridge import __version__
from chat_bridge.core.config import CONFIG_FILENAME, load_bridge_config
from chat_bridge.integrations.chat.sqlite_state import SqliteStateAdapter
from chat_bridge.surfaces.cli.cli import app

runner = CliRunner()


def test_version_flag() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert result.output.strip() == f"chat-bridge {__version__}"


def test_thread_id_encode_and_decode() -> None:
    encoded = runner.invoke(
        app,
        [
            "thread-id",
            "encode",
            "gchat",
            "spaces/AAA",
            "--sub-scope",
            "spaces/AAA/threads/t1",
        ],
    )
    assert encoded.exit_code == 0
    thread_id = encoded.output.strip()
    assert thread_id.startswith("gchat:spaces/AAA:")

    decoded = runner.invoke(app, ["thread-id", "decode", thread_id])
    assert decoded.exit_code == 0
    assert json.loads(decoded.output) == {
        "platform": "gchat",
        "primary": "spaces/AAA",
        "sub_scope": "spaces/AAA/threads/t1",
        "is_dm": False,
    }


def test_thread_id_encode_dm() -> None:
    result = runner.invoke(app, ["thread-id", "encode", "gchat", "spaces/DM1", "--dm"])

    assert result.exit_code == 0
    assert result.output.strip() == "gchat:spaces/DM1:dm"


def test_thread_id_decode_rejects_malformed_ids() -> None:
    result = runner.invoke(app, ["thread-id", "decode", "gchat:spaces/AAA:***"])

    assert result.exit_code == 1


def test_thread_id_encode_rejects_bad_platform() -> None:
    result = runner.invoke(app, ["thread-id", "encode", "a:b", "spaces/AAA"])

    assert result.exit_code == 1


def _seed_state(root: Path) -> None:
    config = load_bridge_config(root)
    assert config.state.path is not None

    async def _seed() -> None:
        state = SqliteStateAdapter(config.state.path)
        await state.connect()
        try:
            await state.subscribe("gchat:spaces/AAA:dA")
            await state.subscribe("gchat:spaces/BBB")
            await state.subscribe("fake:room-1")
            await state.set("gchat:botId", "users/bot")
        finally:
            await state.disconnect()

    asyncio.run(_seed())


def test_state_list_subscriptions_with_prefix(tmp_path: Path) -> None:
    _seed_state(tmp_path)

    result = runner.invoke(
        app,
        ["state", "list-subscriptions", "--path", str(tmp_path), "--prefix", "gchat:"],
    )

    assert result.exit_code == 0
    assert sorted(result.output.split()) == ["gchat:spaces/AAA:dA", "gchat:spaces/BBB"]


def test_state_get_prints_json(tmp_path: Path) -> None:
    _seed_state(tmp_path)

    found = runner.invoke(app, ["state", "get", "gchat:botId", "--path", str(tmp_path)])
    missing = runner.invoke(app, ["state", "get", "nope", "--path", str(tmp_path)])

    assert found.exit_code == 0
    assert json.loads(found.output) == "users/bot"
    assert missing.exit_code == 1


def test_state_commands_reject_memory_backend(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text("state:\n  backend: memory\n", encoding="utf-8")

    result = runner.invoke(app, ["state", "list-subscriptions", "--path", str(tmp_path)])

    assert result.exit_code == 1


def test_invalid_config_exits(tmp_path: Path) -> None:
    (tmp_path / CONFIG_FILENAME).write_text("state: [1, 2]\n", encoding="utf-8")

    result = runner.invoke(app, ["state", "get", "k", "--path", str(tmp_path)])

    assert result.exit_code == 1
