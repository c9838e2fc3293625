"""Tests for the rule-based intent classifier."""

import pytest

from freightbot.conversation.intent_classifier import ExtractedFields, Intent, IntentClassifier
from freightbot.conversation.state_machine import ConversationState


class TestControlCommands:
    @pytest.mark.parametrize("text", ["reiniciar", "Recomeçar", "RESET", "quero começar de novo"])
    def test_reset(self, classifier, text):
        result = classifier.classify(text)
        assert result.intent == Intent.RESET
        assert result.confidence == 1.0

    @pytest.mark.parametrize("text", ["cancelar", "Cancel", "quero sair"])
    def test_cancel(self, classifier, text):
        assert classifier.classify(text).intent == Intent.CANCEL

    @pytest.mark.parametrize("text", ["ajuda", "HELP", "não entendi", "como funciona?"])
    def test_help(self, classifier, text):
        result = classifier.classify(text)
        assert result.intent == Intent.HELP
        assert result.confidence == 1.0

    def test_reset_outranks_postal_code(self, classifier):
        assert classifier.classify("reiniciar 01001-000").intent == Intent.RESET

    def test_cancel_outranks_help(self, classifier):
        assert classifier.classify("cancelar, ajuda").intent == Intent.CANCEL


class TestStructuredData:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("01001-000", "01001000"),
            ("01001000", "01001000"),
            ("meu cep é 12345-678", "12345678"),
        ],
    )
    def test_postal_code(self, classifier, text, expected):
        result = classifier.classify(text)
        assert result.intent == Intent.PROVIDE_DESTINATION
        assert result.confidence == 1.0
        assert result.extracted == ExtractedFields(destination=expected)

    def test_postal_code_outranks_freight_keyword(self, classifier):
        result = classifier.classify("frete para 01310-100")
        assert result.intent == Intent.PROVIDE_DESTINATION
        assert result.extracted.destination == "01310100"

    @pytest.mark.parametrize("text,expected", [("5", 5), ("quero 12 unidades", 12), ("9999", 9999)])
    def test_quantity(self, classifier, text, expected):
        result = classifier.classify(text)
        assert result.intent == Intent.PROVIDE_QUANTITY
        assert result.extracted == ExtractedFields(quantity=expected)

    def test_zero_is_not_a_quantity(self, classifier):
        assert classifier.classify("0").intent == Intent.UNKNOWN

    def test_five_digit_number_is_not_a_quantity(self, classifier):
        assert classifier.classify("10000").intent == Intent.UNKNOWN

    def test_quantity_outranks_freight_keyword(self, classifier):
        assert classifier.classify("frete de 3 caixas").intent == Intent.PROVIDE_QUANTITY


class TestKeywordIntents:
    @pytest.mark.parametrize("text", ["frete", "Quero uma COTAÇÃO", "quanto custa o envio?"])
    def test_freight_query(self, classifier, text):
        result = classifier.classify(text)
        assert result.intent == Intent.FREIGHT_QUERY
        assert result.confidence == 0.9

    def test_tracking(self, classifier):
        result = classifier.classify("onde está meu pedido?")
        assert result.intent == Intent.TRACK_ORDER
        assert result.confidence == 0.8

    def test_payment(self, classifier):
        result = classifier.classify("preciso da segunda via do boleto")
        assert result.intent == Intent.PAYMENT_STATUS
        assert result.confidence == 0.8

    def test_human_support(self, classifier):
        result = classifier.classify("quero falar com um atendente")
        assert result.intent == Intent.HUMAN_SUPPORT
        assert result.confidence == 0.9

    def test_unknown(self, classifier):
        result = classifier.classify("bom dia!")
        assert result.intent == Intent.UNKNOWN
        assert result.confidence == 0.0
        assert result.extracted == ExtractedFields()

    def test_empty_text_is_unknown(self, classifier):
        assert classifier.classify("").intent == Intent.UNKNOWN

    def test_current_state_does_not_change_result(self, classifier):
        for state in ConversationState:
            assert classifier.classify("frete", state).intent == Intent.FREIGHT_QUERY

    def test_deterministic(self, classifier):
        assert classifier.classify("01001-000") == classifier.classify("01001-000")


class TestMultipleIntents:
    def test_postal_code_and_freight_keyword(self, classifier):
        assert classifier.has_multiple_intents("frete para 01001-000")

    def test_quantity_and_tracking(self, classifier):
        assert classifier.has_multiple_intents("rastrear 3 pedidos")

    def test_bare_postal_code_is_single_signal(self, classifier):
        assert not classifier.has_multiple_intents("12345678")

    def test_hyphenated_postal_code_suffix_also_reads_as_quantity(self, classifier):
        # Every check runs on the whole message, so "678" counts as a quantity.
        assert classifier.has_multiple_intents("12345-678")

    def test_single_keyword(self, classifier):
        assert not classifier.has_multiple_intents("frete")

    def test_postal_code_and_quantity(self, classifier):
        assert classifier.has_multiple_intents("01001-000 5")

    def test_nothing(self, classifier):
        assert not classifier.has_multiple_intents("bom dia")


class TestExtractionHelpers:
    def test_extract_postal_code_missing(self):
        assert IntentClassifier.extract_postal_code("sem cep aqui") is None

    def test_extract_quantity_first_token(self):
        assert IntentClassifier.extract_quantity("2 ou 3") == 2
