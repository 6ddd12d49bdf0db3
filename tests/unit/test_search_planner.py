"""Unit tests for write-plan construction."""

from fulltext_engine.config import TableNames
from fulltext_engine.search.diff import compute_token_diff
from fulltext_engine.search.models import TableWrite
from fulltext_engine.search.planner import WritePlanner
from fulltext_engine.store.protocol import WriteRequest


def _key(write: TableWrite) -> dict:
    request = write.request
    return request.put_item if request.is_put else request.delete_key


def _sections(plan: list[TableWrite]) -> list[tuple[str, str]]:
    return [(write.table_name, write.kind) for write in plan]


class TestPlanOrdering:
    def test_word_replacement_plan_order(self):
        diff = compute_token_diff("fast fox runs", "fast fox jumps")
        stats_write = TableWrite("FullTextTokenStats", WriteRequest.put({"pk": "f#bio#t#jum", "df": 1}))

        plan = WritePlanner().plan("1", "bio", diff, [stats_write])

        assert _sections(plan) == [
            # removed lossy: run, runs*, uns
            ("LossyPostings", "delete"),
            ("DocTokens", "delete"),
            ("LossyPostings", "delete"),
            ("DocTokens", "delete"),
            ("LossyPostings", "delete"),
            ("DocTokens", "delete"),
            # added lossy: jum, jump*, mps, ump
            ("LossyPostings", "put"),
            ("DocTokens", "put"),
            ("LossyPostings", "put"),
            ("DocTokens", "put"),
            ("LossyPostings", "put"),
            ("DocTokens", "put"),
            ("LossyPostings", "put"),
            ("DocTokens", "put"),
            # removed exact: runs
            ("ExactPostings", "delete"),
            ("DocTokens", "delete"),
            ("DocTokenPositions", "delete"),
            # stats
            ("FullTextTokenStats", "put"),
            # added exact: jumps
            ("ExactPostings", "put"),
            ("DocTokenPositions", "put"),
            ("DocTokens", "put"),
            # mirror
            ("FullTextDocMirror", "put"),
        ]
        assert _key(plan[0]) == {"pk": "f#bio#t#run", "sk": "d#1"}
        assert _key(plan[1]) == {"pk": "d#1", "sk": "f#bio#t#run"}
        assert plan[18].request.put_item == {"pk": "f#bio#t#jumps", "sk": "d#1", "positions": [2]}
        assert plan[-1].request.put_item == {"pk": "d#1#f#bio", "content": "fast fox jumps"}

    def test_unchanged_document_plans_only_the_mirror(self):
        diff = compute_token_diff("fox", "fox")

        plan = WritePlanner().plan("1", "bio", diff)

        assert _sections(plan) == [("FullTextDocMirror", "put")]

    def test_updated_exact_rewrites_positions(self):
        diff = compute_token_diff("fox fox", "fox the fox")

        plan = WritePlanner().plan("1", "bio", diff)

        exact_puts = [write.request.put_item for write in plan if write.table_name == "ExactPostings"]
        assert {"pk": "f#bio#t#fox", "sk": "d#1", "positions": [0, 2]} in exact_puts

    def test_delete_mirror_on_removal(self):
        diff = compute_token_diff("fox", None)

        plan = WritePlanner().plan("1", "bio", diff, delete_mirror=True)

        assert plan[-1].table_name == "FullTextDocMirror"
        assert plan[-1].request.delete_key == {"pk": "d#1#f#bio"}


class TestSharedDocTokenEntries:
    def test_token_in_both_streams_gets_one_entry(self):
        diff = compute_token_diff(None, "fox")

        plan = WritePlanner().plan("1", "bio", diff)

        doc_token_keys = [_key(write) for write in plan if write.table_name == "DocTokens"]
        assert doc_token_keys.count({"pk": "d#1", "sk": "f#bio#t#fox"}) == 1
        assert {"pk": "d#1", "sk": "f#bio#t#fox*"} in doc_token_keys

    def test_entry_survives_when_token_remains_lossy(self):
        # "fox" stops being a word but is still a trigram of "foxes".
        diff = compute_token_diff("fox", "foxes")
        assert diff.removed_exact == {"fox"}
        assert "fox" in diff.next_lossy

        plan = WritePlanner().plan("1", "bio", diff)

        doc_token_deletes = [
            write.request.delete_key for write in plan if write.table_name == "DocTokens" and write.kind == "delete"
        ]
        assert {"pk": "d#1", "sk": "f#bio#t#fox"} not in doc_token_deletes
        assert any(write.table_name == "ExactPostings" and write.kind == "delete" for write in plan)


class TestSingleRowBuilders:
    def test_custom_table_names(self):
        planner = WritePlanner(TableNames(lossy="L", doc_tokens="D"))

        assert planner.lossy_posting("1", "bio", "fox").table_name == "L"
        assert planner.doc_token("1", "bio", "fox", delete=True).table_name == "D"

    def test_exact_positions_writes_put_together(self):
        writes = WritePlanner().exact_positions_writes("1", "bio", "fox", [3, 7])

        assert [(write.table_name, write.kind) for write in writes] == [
            ("ExactPostings", "put"),
            ("DocTokens", "put"),
            ("DocTokenPositions", "put"),
        ]
        assert writes[2].request.put_item == {"pk": "d#1", "sk": "f#bio#t#fox", "positions": [3, 7]}

    def test_exact_positions_writes_delete_together(self):
        writes = WritePlanner().exact_positions_writes("1", "bio", "fox", None)

        assert {write.kind for write in writes} == {"delete"}
