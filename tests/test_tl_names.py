import ast
import re
from pathlib import Path

import pytest

import keeper_test_utils  # noqa: F401

from tg_keeper import chats, helpers, media, updates

types = pytest.importorskip("telethon.tl.types")

TL_NAME = re.compile(r"^(Message|Update|Peer|Photo|Document|User|Chat|Channel)[A-Za-z]*$")


def _tl_names(module):
    """String constants that name a TL constructor, skipping ``startswith`` prefixes."""

    tree = ast.parse(Path(module.__file__).read_text())
    prefixes = {
        id(arg)
        for node in ast.walk(tree)
        if isinstance(node, ast.Call)
        and isinstance(node.func, ast.Attribute)
        and node.func.attr == "startswith"
        for arg in node.args
    }
    return {
        node.value
        for node in ast.walk(tree)
        if isinstance(node, ast.Constant)
        and isinstance(node.value, str)
        and TL_NAME.match(node.value)
        and id(node) not in prefixes
    }


@pytest.mark.parametrize("module", [chats, helpers, media, updates])
def test_matched_class_names_exist_in_telethon(module):
    names = _tl_names(module)
    assert names
    assert sorted(n for n in names if not hasattr(types, n)) == []


def test_dispatch_tables_name_telethon_types():
    tables = [
        media.NOT_DOWNLOADABLE,
        media.EXCLUDED_THUMBS,
        chats._KIND_BY_TYPE,
        updates.NEW_MESSAGE,
        updates.EDITED_MESSAGE,
        helpers._PEER_ID_FIELDS,
    ]
    names = {name for table in tables for name in table}
    assert sorted(n for n in names if not hasattr(types, n)) == []
