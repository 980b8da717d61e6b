from csvlanding.scheduler import load_inbox
from csvlanding.schemas import RunStatus


def test_inbox_files_load_one_at_a_time_in_name_order(test_settings, runner, write_csv) -> None:
    write_csv("b.csv", [("2", "Grace", "Hopper", "2024-01-02")])
    write_csv("a.csv", [("1", "Ada", "Lovelace", "2024-01-01")])
    write_csv("c.csv", [("1", "Alan", "Turing", "2024-01-03")])

    results = load_inbox(test_settings, runner)

    assert [result.source_file for result in results] == ["a.csv", "b.csv", "c.csv"]
    assert all(result.status == RunStatus.SUCCESS for result in results)
    assert results[2].counters.dups_vs_history == 1
