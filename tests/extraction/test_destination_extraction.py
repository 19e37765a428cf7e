from extraction.destination import SCHEMA_NAME, fallback_destination
from extraction.engine import ExtractionContext


def _context(**overrides):
    values = dict(destination="Manali", days=5, currency="INR", explicit_destination=True)
    values.update(overrides)
    return ExtractionContext(**values)


def test_markup_layout_is_parsed(engine, destination_html):
    result = engine.extract(destination_html, SCHEMA_NAME, _context())
    info = result.data

    assert result.strategy == "markup"
    assert info.name == "Manali"
    assert info.country == "India"
    assert info.best_time_to_visit == "March to June"
    assert [a.name for a in info.attractions] == ["Hadimba Temple", "Solang Valley"]
    assert info.attractions[1].type == "adventure"
    assert info.attractions[0].description == "Ancient cave temple in cedar forest"
    assert info.transportation.recommended == "bus"
    assert info.transportation.options == ["bus", "car", "flight"]
    assert info.transportation.estimated_cost == 2500.0
    local = info.transportation.local_transportation
    assert local.buses.startswith("HRTC buses")
    assert local.other == "Shared taxis are common."
    assert local.tips == ["Book taxis early", "Carry cash"]
    assert "```" not in info.html


def test_explicit_destination_is_never_replaced(engine):
    text = "<p><strong>Name:</strong> Kullu</p><p><strong>Country:</strong> India</p>"
    info = engine.extract(text, SCHEMA_NAME, _context()).data

    assert info.name == "Manali"
    assert info.city == "Manali"


def test_suggested_name_is_used_without_explicit_destination(engine):
    text = (
        "<p><strong>Name:</strong> Udaipur</p><p><strong>City:</strong> Udaipur</p>"
        "<p><strong>Country:</strong> India</p>"
    )
    info = engine.extract(text, SCHEMA_NAME, _context(destination="Rajasthan", explicit_destination=False)).data

    assert info.name == "Udaipur"
    assert info.city == "Udaipur"


def test_plain_text_answer_is_mined(engine):
    text = (
        "Name: Goa\nCountry: India\nDescription: Beaches and forts.\n\n"
        "Top Attractions:\n1. Baga Beach - lively shoreline\n2. Fort Aguada - Portuguese fort\n"
    )
    result = engine.extract(text, SCHEMA_NAME, _context(destination="Goa"))

    assert result.strategy == "plain-text"
    assert result.data.description == "Beaches and forts."
    assert [a.name for a in result.data.attractions] == ["Baga Beach", "Fort Aguada"]


def test_unrecognizable_answer_falls_back_to_context(engine):
    result = engine.extract("I am not sure what you mean.", SCHEMA_NAME, _context(season="summer"))

    assert result.synthetic
    assert result.data == fallback_destination(_context(season="summer"))
    assert result.data.best_time_to_visit == "summer"


def test_fallback_markup_escapes_the_name():
    info = fallback_destination(_context(destination="<svg onload=alert(1)>"))

    assert info.name == "<svg onload=alert(1)>"
    assert "<svg" not in info.html
    assert "&lt;svg onload=alert(1)&gt;" in info.html
