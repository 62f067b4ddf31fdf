import os

import pytest


def _qt_ready() -> bool:
    try:
        from PySide6.QtCore import QCoreApplication
        from PySide6.QtNetwork import QNetworkInformation

        _ = (QCoreApplication, QNetworkInformation)
        return True
    except Exception:
        return False


@pytest.fixture(scope="session")
def qt_app():
    from PySide6.QtCore import QCoreApplication

    return QCoreApplication.instance() or QCoreApplication([])


def pytest_collection_modifyitems(config, items):
    skip_ui_in_ci = os.getenv("CI") == "true" and os.getenv("RUN_UI_TESTS") != "1"
    qt_ready = _qt_ready()

    skip_in_ci = pytest.mark.skip(reason="UI tests desactivados en CI por defecto (RUN_UI_TESTS=1 para activarlos).")
    skip_qt = pytest.mark.skip(reason="PySide6 no disponible correctamente en entorno CI")

    for item in items:
        if "tests/ui/" not in item.nodeid:
            continue
        if skip_ui_in_ci:
            item.add_marker(skip_in_ci)
        elif not qt_ready:
            item.add_marker(skip_qt)
