from ui.nodes import RenderNode, text_to_nodes
from webshell_core.messages import OutputKind


def test_paragraphs_become_separate_nodes() -> None:
    nodes = text_to_nodes("first line\nstill first\n\nsecond", OutputKind.OUTPUT)
    assert [node.text for node in nodes] == ["first line\nstill first", "second"]
    assert all(node.kind == OutputKind.OUTPUT for node in nodes)


def test_fenced_block_is_kept_whole() -> None:
    text = "intro\n\n```\ndef f():\n\n    return 1\n```\n\nafter"
    nodes = text_to_nodes(text)
    assert [node.text for node in nodes] == ["intro", "```\ndef f():\n\n    return 1\n```", "after"]


def test_empty_text_renders_one_node() -> None:
    nodes = text_to_nodes("", OutputKind.ERROR)
    assert nodes == (RenderNode(OutputKind.ERROR, ""),)


def test_node_length_is_character_count() -> None:
    assert len(RenderNode(OutputKind.COMMAND_ECHO, "héllo")) == 5


def test_echo_shell_output_is_one_block() -> None:
    nodes = text_to_nodes("hi  \n***  \n")
    assert [node.text for node in nodes] == ["hi  \n***  "]
