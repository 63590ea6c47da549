"""実行時ヘルパー implement / derives のテスト"""

from dataclasses import dataclass

import pytest

from derivetool.runtime import derives, implement


@dataclass
class Point:
    x: int
    y: int


def test_implement_copies_members():
    @dataclass
    class Local:
        x: int

    @implement(Local, "Display")
    class _Local_Display:
        def __str__(self) -> str:
            return f"<{self.x}>"

    @implement(Local, "From[int]")
    class _Local_From:
        @classmethod
        def from_inner(cls, value: int) -> Local:
            return cls(value)

        @property
        def doubled(self) -> int:
            return self.x * 2

    local = Local.from_inner(3)
    assert str(local) == "<3>"
    assert local.doubled == 6
    assert derives(Local) == ("Display", "From[int]")
    assert derives(local) == ("Display", "From[int]")


def test_implement_returns_block_unchanged():
    @dataclass
    class Local:
        x: int

    class _Block:
        def value(self) -> int:
            return self.x

    assert implement(Local, "Value")(_Block) is _Block


def test_non_member_attributes_are_ignored():
    @dataclass
    class Local:
        x: int

    @implement(Local, "Marker")
    class _Block:
        CONSTANT = 1

    assert not hasattr(Local, "CONSTANT")
    assert derives(Local) == ("Marker",)


def test_duplicate_member_is_rejected():
    @dataclass
    class Local:
        x: int

    @implement(Local, "Display")
    class _First:
        def __str__(self) -> str:
            return "first"

    with pytest.raises(TypeError, match="Local.__str__ is already implemented by Display"):

        @implement(Local, "Wrapper")
        class _Second:
            def __str__(self) -> str:
                return "second"


def test_subclasses_keep_their_own_records():
    @dataclass
    class Base:
        x: int

    @implement(Base, "Display")
    class _BaseDisplay:
        def __str__(self) -> str:
            return "base"

    class Child(Base):
        pass

    @implement(Child, "Debug")
    class _ChildDebug:
        def __str__(self) -> str:
            return "child"

    assert str(Child(1)) == "child"
    assert derives(Child) == ("Debug",)
    assert derives(Base) == ("Display",)


def test_derives_of_plain_type():
    assert derives(Point) == ()
    assert derives(Point(1, 2)) == ()
