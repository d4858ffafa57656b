from interaction_history import InteractionHistory


def test_summary_empty() -> None:
    assert InteractionHistory().summary() == "No actions taken yet."


def test_summary_lists_actions_in_order() -> None:
    history = InteractionHistory()
    history.record_action("type_text", "hi", True)
    history.record_action("hotkey", "cmd+s", False)
    assert history.summary() == "1. type_text: hi [OK]\n2. hotkey: cmd+s [FAILED]"


def test_keeps_only_most_recent_records() -> None:
    history = InteractionHistory(max_records=2)
    for i in range(5):
        history.record_action("wait", f"ms={i}", True)
    assert len(history) == 2
    assert [r.details for r in history.records] == ["ms=3", "ms=4"]


def test_repeated_action_detection() -> None:
    history = InteractionHistory()
    history.record_action("click_grid", "click_grid[cell=5] Clicked cell 5", True)
    assert not history.has_repeated_action("click_grid", "click_grid[cell=5]")
    history.record_action("click_grid", "CLICK_GRID[cell=5] again", True)
    assert history.has_repeated_action("click_grid", "click_grid[cell=5]")
    assert not history.has_repeated_action("click_grid", "click_grid[cell=5]", threshold=3)
    assert not history.has_repeated_action("type_text", "click_grid[cell=5]")
