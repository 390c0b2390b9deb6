from streamlit.testing.v1 import AppTest


def _app():
    at = AppTest.from_file("../app.py", default_timeout=30)
    return at.run()


def test_app_renders_defaults():
    at = _app()
    assert not at.exception
    assert not at.error
    assert at.text_input(key="concentrations").value == "50, 100, 200"


def test_app_flags_invalid_total_flow():
    at = _app()
    at.number_input(key="total_flow").set_value(0.0).run()
    assert not at.exception
    assert [e.value for e in at.error] == ["Invalid input parameters"]


def test_app_warns_on_high_humidity():
    at = _app()
    at.number_input(key="target_humidity").set_value(85.0).run()
    assert not at.exception
    assert any("condensation" in w.value for w in at.warning)
