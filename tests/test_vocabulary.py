"""Tests for the acquisition vocabulary config."""

import pytest

from scripts.kpi_engine.vocabulary import label_key, load_vocabulary, parse_vocabulary
from scripts.lib.errors import ConfigError


class TestDefaultVocabulary:
    def test_paid_sources(self, vocab):
        assert vocab.is_paid("Facebook Ads (Lead Form)")
        assert vocab.is_paid("Google Ads / SEO")
        assert not vocab.is_paid("QR Code Scan")
        assert not vocab.is_paid(None)

    def test_platform_map(self, vocab):
        assert vocab.platform_for("Google Ads / SEO") == "Google"
        assert vocab.platform_for("TikTok / YouTube / Other Organic") == "TikTok"
        assert vocab.platform_for("Walk-Ins (Follow-Up)") == "Other"
        assert vocab.platform_for("never heard of it") == "Other"
        assert vocab.platform_for(None) == "Other"

    def test_roas_platforms_in_order(self, vocab):
        assert vocab.roas_platforms == (("Facebook", "FB Ads"), ("Google", "Google"), ("TikTok", "TikTok"))

    def test_installment_types(self, vocab):
        assert vocab.is_installment("PP")
        assert vocab.is_installment("installment-plan")
        assert not vocab.is_installment("PIF")
        assert not vocab.is_installment(None)

    def test_booking_channels(self, vocab):
        assert [c.key for c in vocab.booking_channels] == ["PHONE", "DM", "EMAIL"]

    def test_source_lists(self, vocab):
        assert len(vocab.phone_lead_sources) == 10
        assert len(vocab.dm_sources) == 13

    def test_objections(self, vocab):
        assert len(vocab.objections) == 11
        assert vocab.objections[0] == "Too Expensive / No Budget"
        assert label_key(vocab.objections[0]) == "too_expensive___no_budget"

    def test_payment_mix_in_order(self, vocab):
        assert [code for code, _ in vocab.payment_mix] == ["PIF", "PP", "DP"]
        assert dict(vocab.payment_mix)["DP"] == "Down Payment (DP)"


class TestLabelKey:
    def test_non_word_characters(self):
        assert label_key("Instagram Inbound") == "instagram_inbound"
        assert label_key("Email → DM CTA") == "email___dm_cta"
        assert label_key("Typeform / Quiz Opt-In") == "typeform___quiz_opt_in"


class TestParseVocabulary:
    def test_rejects_non_mapping(self):
        with pytest.raises(ConfigError):
            parse_vocabulary(["not", "a", "mapping"])

    def test_rejects_bad_list(self):
        with pytest.raises(ConfigError):
            parse_vocabulary({"paid_sources": "Facebook"})

    def test_rejects_unknown_outbound_event(self):
        with pytest.raises(ConfigError):
            parse_vocabulary({"booking_channels": [
                {"key": "SMS", "outbound_event": "SMS_SUMMARY", "outbound_field": "sent"},
            ]})

    def test_rejects_incomplete_channel(self):
        with pytest.raises(ConfigError):
            parse_vocabulary({"booking_channels": [{"key": "SMS"}]})

    def test_minimal_document(self):
        vocab = parse_vocabulary({"paid_sources": ["Ads"], "source_platforms": {"Ads": "Facebook"}})
        assert vocab.is_paid("Ads")
        assert vocab.platform_for("Ads") == "Facebook"
        assert vocab.booking_channels == ()
        assert vocab.objections == ()
        assert vocab.payment_mix == ()

    def test_payment_mix_codes_upper_cased(self):
        vocab = parse_vocabulary({"payment_mix": {"pif": "Paid In Full"}})
        assert vocab.payment_mix == (("PIF", "Paid In Full"),)


class TestLoadVocabulary:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_vocabulary(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("paid_sources: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_vocabulary(path)

    def test_custom_file(self, tmp_path):
        path = tmp_path / "vocab.yaml"
        path.write_text(
            "paid_sources:\n  - Billboard\nsource_platforms:\n  Billboard: Outdoor\n",
            encoding="utf-8",
        )
        vocab = load_vocabulary(path)
        assert vocab.is_paid("Billboard")
        assert vocab.platform_for("Billboard") == "Outdoor"
