"""Tests for origin selection and incremental file selection."""

import types

from prwarden_core.tracker import AtBase, AtCommit, choose_origin, highest_reviewed_commit, select_files


def f(name):
    return types.SimpleNamespace(filename=name)


class TestChooseOrigin:
    def test_first_run_starts_at_base(self):
        assert choose_origin([], ["c1", "c2"], "base", "c2") == AtBase("base")

    def test_resumes_after_last_reviewed_commit(self):
        assert choose_origin(["c1"], ["c1", "c2", "c3"], "base", "c3") == AtCommit("c1")

    def test_picks_newest_reviewed_commit(self):
        assert choose_origin(["c1", "c2"], ["c1", "c2", "c3"], "base", "c3") == AtCommit("c2")

    def test_head_already_reviewed_falls_back_to_base(self):
        assert choose_origin(["c1", "c2"], ["c1", "c2"], "base", "c2") == AtBase("base")

    def test_force_pushed_away_commit_falls_back_to_base(self):
        assert choose_origin(["gone"], ["n1", "n2"], "base", "n2") == AtBase("base")


def test_highest_reviewed_commit_ignores_unknown_ids():
    assert highest_reviewed_commit(["a", "b", "c"], ["zzz", "b"]) == "b"
    assert highest_reviewed_commit(["a"], []) is None


class TestSelectFiles:
    def test_intersection_keeps_target_order(self):
        target = [f("b.py"), f("a.py"), f("c.py")]
        incremental = [f("c.py"), f("b.py")]
        assert [x.filename for x in select_files(incremental, target)] == ["b.py", "c.py"]

    def test_returns_target_entries(self):
        target_entry = f("a.py")
        assert select_files([f("a.py")], [target_entry])[0] is target_entry

    def test_missing_file_list_gives_nothing(self):
        assert select_files(None, [f("a.py")]) == []
        assert select_files([f("a.py")], None) == []
