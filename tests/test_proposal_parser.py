from __future__ import annotations

from shell_agent.proposals import (
    NoProposal,
    Proposals,
    extract_code_blocks,
    extract_terminal_blocks,
    parse_proposals,
    strip_terminal_blocks,
)


def test_terminal_block_extract_and_strip() -> None:
    txt = "Hello\n<Terminal>\nwhoami\n</Terminal>\nDone\n<TERMINAL>pwd</TERMINAL>\n"
    blocks = extract_terminal_blocks(txt)
    assert blocks == ["whoami", "pwd"]
    stripped = strip_terminal_blocks(txt)
    assert "Hello" in stripped
    assert "Done" in stripped
    assert "whoami" not in stripped
    assert "pwd" not in stripped


def test_parse_keeps_emission_order() -> None:
    res = parse_proposals("First list, then read.\n<Terminal>ls -la</Terminal>\n<terminal>cat a.txt</terminal>")
    assert res == Proposals(("ls -la", "cat a.txt"))


def test_plain_prose_has_no_proposal() -> None:
    assert parse_proposals("Looks like the disk is full.") == NoProposal()
    assert parse_proposals("") == NoProposal()


def test_malformed_blocks_yield_no_proposal() -> None:
    assert parse_proposals("<Terminal>ls") == NoProposal("unbalanced")
    assert parse_proposals("ls</Terminal>") == NoProposal("unbalanced")
    assert parse_proposals("<Terminal>a<Terminal>b</Terminal></Terminal>") == NoProposal("nested")
    # One bad block poisons the whole reply.
    assert parse_proposals("<Terminal>uptime</Terminal><Terminal>  </Terminal>") == NoProposal("empty block")


def test_extract_code_blocks_in_order() -> None:
    txt = "Try:\n```bash\ndf -h\n```\nor\n  ```\ndu -sh /var/log\n```\n```\n\n```\n"
    assert extract_code_blocks(txt) == ["df -h", "du -sh /var/log"]


def test_unterminated_code_fence_is_ignored() -> None:
    assert extract_code_blocks("```\nrm -rf /tmp/x\n") == []
