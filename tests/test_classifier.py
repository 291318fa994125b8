import json
from unittest.mock import MagicMock

import pytest

from wastelens import classifier
from wastelens.classes.waste import AnalysisResult, WasteType, ScanRecord
from wastelens.errors import CollaboratorError, ValidationError

PAYLOAD = {
    "itemName": "Water Bottle",
    "quantity": 2,
    "weightGrams": 50,
    "material": "PET plastic",
    "environmentScore": 6,
    "recyclable": True,
    "compostable": False,
    "carbonFootprintKg": 0.08,
    "suggestions": ["Rinse before recycling", "Remove the cap"],
    "confidence": 0.87,
}


def mock_client(result=None, error=None):
    client = MagicMock()
    if error is not None:
        client.chat.completions.create.side_effect = error
    else:
        client.chat.completions.create.return_value = result
    return client


def test_classify_success():
    expected = AnalysisResult.model_validate(PAYLOAD)
    client = mock_client(expected)

    result = classifier.classify_waste_image(b"\xff\xd8 image", "image/png", client)

    assert result.ok
    assert result.value.item_name == "Water Bottle"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["response_model"] is AnalysisResult
    image_part = kwargs["messages"][0]["content"][1]
    assert image_part["image_url"]["url"].startswith("data:image/png;base64,")


def test_classify_without_image():
    client = mock_client()
    result = classifier.classify_waste_image(b"", client=client)

    assert isinstance(result.error, ValidationError)
    assert result.error.messages == ["No image provided"]
    client.chat.completions.create.assert_not_called()


def test_classify_transport_failure_falls_back():
    client = mock_client(error=ConnectionError("network unreachable"))

    result = classifier.classify_waste_image(b"image", client=client)
    assert isinstance(result.error, CollaboratorError)

    analysis, banner = classifier.with_fallback(result)
    assert banner == classifier.FALLBACK_BANNER
    assert analysis.item_name == "Unidentified Item"
    assert analysis.weight_grams == 50
    assert analysis.environment_score == 5
    assert analysis.confidence == 0.3
    assert len(analysis.suggestions) == 3


def test_fallback_is_a_fresh_copy():
    first = classifier.fallback_analysis()
    first.suggestions.append("changed")
    assert len(classifier.fallback_analysis().suggestions) == 3


def test_plain_mapping_response_is_validated():
    bad = dict(PAYLOAD, environmentScore=14)
    result = classifier.classify_waste_image(b"image", client=mock_client(bad))

    assert isinstance(result.error, ValidationError)
    assert any("environmentScore" in message for message in result.error.messages)


def test_parse_analysis_accepts_fenced_json():
    text = "```json\n" + json.dumps(PAYLOAD) + "\n```"
    result = classifier.parse_analysis(text)
    assert result.ok
    assert result.value.quantity == 2


def test_parse_analysis_reports_missing_fields():
    payload = {key: value for key, value in PAYLOAD.items() if key != "carbonFootprintKg"}
    result = classifier.parse_analysis(payload)

    assert isinstance(result.error, ValidationError)
    assert result.error.messages == ["carbonFootprintKg: Field required"]


@pytest.mark.parametrize("raw", ["not json at all", "[1, 2, 3]"])
def test_parse_analysis_rejects_garbage(raw):
    assert isinstance(classifier.parse_analysis(raw).error, ValidationError)


def test_refine_includes_feedback():
    previous = AnalysisResult.model_validate(PAYLOAD)
    refined = previous.model_copy(update={"item_name": "Glass Bottle", "material": "glass"})
    client = mock_client(refined)

    result = classifier.refine_classification(previous, "  It is glass, not plastic ", b"image", client=client)

    assert result.value.material == "glass"
    prompt = client.chat.completions.create.call_args.kwargs["messages"][0]["content"][0]["text"]
    assert "User feedback: It is glass, not plastic" in prompt
    assert '"itemName":"Water Bottle"' in prompt


def test_refine_requires_feedback():
    previous = AnalysisResult.model_validate(PAYLOAD)
    client = mock_client()

    result = classifier.refine_classification(previous, "   ", b"image", client=client)

    assert isinstance(result.error, ValidationError)
    client.chat.completions.create.assert_not_called()


def test_record_from_analysis():
    analysis = AnalysisResult.model_validate(PAYLOAD)
    record = ScanRecord.from_analysis(analysis, WasteType.PLASTIC)

    assert record.disposal_category == "recycling"
    assert record.weight_grams == 50
    assert record.quantity == 2
    assert record.ai_analysis.carbon_footprint_kg == 0.08
    assert record.id.startswith("item-")
