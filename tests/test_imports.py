"""
Smoke tests to verify all modules can be imported.
"""

def test_import_webshell_core():
    import webshell_core
    assert hasattr(webshell_core, '__version__')


def test_import_sandbox():
    import sandbox
    assert hasattr(sandbox, '__version__')


def test_import_ui():
    import ui
    assert hasattr(ui, '__version__')


def test_import_console():
    import console
    assert hasattr(console, '__version__')
