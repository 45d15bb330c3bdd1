import pytest
from PIL import Image

from mediaprocessing.config import GhostscriptPreset
from mediaprocessing.compression.errors import (
    BudgetUnreachable,
    DiagnosisCause,
    InvalidInput,
    ToolFailed,
    ToolTimeout,
)
from mediaprocessing.compression.fallback import (
    TIER_DOWNSCALE,
    FallbackChain,
    compute_downscale,
)
from mediaprocessing.compression.result import (
    CompressionRequest,
    MediaKind,
    Strategy,
    TierStatus,
)
from mediaprocessing.compression.search import SizeTargetSearch

PRESETS = [
    GhostscriptPreset("high", 150, 80),
    GhostscriptPreset("medium", 120, 65),
    GhostscriptPreset("low", 96, 50),
    GhostscriptPreset("very_low", 72, 35),
    GhostscriptPreset("minimum", 50, 20),
]


class FakeCodec:
    """Sizes proportional to pixel area and quality; PDFs by preset dpi."""

    def __init__(self, tier_a_size=50000, gs_available=False, gs_error=None,
                 image_share=0.05, downscale_error=None):
        self.tier_a_size = tier_a_size
        self.gs_available = gs_available
        self.gs_error = gs_error
        self.image_share = image_share
        self.downscale_error = downscale_error
        self.calls = []
        self.strip_flags = []

    def encode(self, data, media_kind, quality, dimensions=None, output_format=None,
               strip_metadata=None):
        self.calls.append(("encode", quality))
        self.strip_flags.append(strip_metadata)
        return b"p" * self.tier_a_size

    def encode_image(self, image, quality, output_format=None, dimensions=None,
                     strip_metadata=None):
        self.calls.append(("encode_image", quality, dimensions))
        self.strip_flags.append(strip_metadata)
        width, height = dimensions or image.size
        return b"i" * int(width * height * (0.5 + quality / 200))

    def downscale_pdf(self, data, scale, quality, strip_metadata=None):
        self.calls.append(("downscale_pdf", scale, quality))
        self.strip_flags.append(strip_metadata)
        if self.downscale_error:
            raise self.downscale_error
        return b"d" * int(self.tier_a_size * scale * scale)

    def encode_pdf_external(self, data, preset, strip_metadata=None):
        self.calls.append(("external", preset.name))
        self.strip_flags.append(strip_metadata)
        if self.gs_error:
            raise self.gs_error
        return b"g" * (preset.dpi * 100)

    def external_tool_available(self):
        return self.gs_available

    def pdf_image_share(self, data):
        return self.image_share


def image_chain(codec, target, allow_downscale=False):
    image = Image.new("RGB", (100, 100), "gray")
    request = CompressionRequest(
        input=b"not-decoded-here", target_bytes=target, allow_downscale=allow_downscale)
    search = SizeTargetSearch(
        lambda q: codec.encode_image(image, q, request.output_format), target).run()
    return FallbackChain(codec, request, search, image=image, presets=PRESETS)


def pdf_chain(codec, target, allow_downscale=False, quality=75, remove_metadata=None):
    request = CompressionRequest(
        input=b"%PDF-1.4 fake", media_kind=MediaKind.PDF, target_bytes=target,
        quality=quality, allow_downscale=allow_downscale, remove_metadata=remove_metadata)
    search = SizeTargetSearch(
        lambda q: codec.encode(request.input, MediaKind.PDF, q),
        target, ceiling=quality, floor=quality).run()
    return FallbackChain(codec, request, search, presets=PRESETS)


def test_compute_downscale_never_enlarges():
    scale, dims = compute_downscale((100, 50), target_bytes=10000, size_at_min_quality=5000)
    assert scale == 1.0
    assert dims == (100, 50)


def test_compute_downscale_applies_margin():
    scale, dims = compute_downscale((1000, 500), target_bytes=2500, size_at_min_quality=10000)
    assert scale == pytest.approx(0.45)
    assert dims == (450, 225)


def test_image_without_downscale_is_unreachable():
    # quality 1 at 100x100 is 5050 bytes
    codec = FakeCodec()
    chain = image_chain(codec, target=1000)

    with pytest.raises(BudgetUnreachable) as excinfo:
        chain.run()

    err = excinfo.value
    assert err.best_size == 5050
    assert chain.smallest_size == 5050
    assert err.target_size == 1000
    assert err.tiers_tried == ["min_quality:failed", "downscale:skipped", "external_tool:skipped"]
    assert any("Allow downscaling" in s for s in err.suggestions)
    assert err.suggestions[0] == "Raise the target to at least 5050 bytes."


def test_min_quality_tier_reuses_search_attempt():
    codec = FakeCodec()
    chain = image_chain(codec, target=1000)
    calls_after_search = len(codec.calls)

    outcome = chain.min_quality_tier()

    assert outcome.status is TierStatus.FAILED
    assert outcome.encode_calls == 0
    assert len(codec.calls) == calls_after_search


def test_image_downscale_succeeds():
    codec = FakeCodec()
    result = image_chain(codec, target=1000, allow_downscale=True).run()

    assert result.strategy is Strategy.RESOLUTION_FALLBACK
    assert result.outcome.dimensions == (40, 40)
    assert result.outcome.size <= 1000
    assert [t.tier for t in result.tiers] == ["min_quality", "downscale"]


def test_downscale_invalid_input_propagates_with_context():
    codec = FakeCodec(downscale_error=InvalidInput("broken image stream"))
    chain = pdf_chain(codec, target=1000, allow_downscale=True)

    with pytest.raises(InvalidInput) as excinfo:
        chain.run()
    assert excinfo.value.tier == TIER_DOWNSCALE
    assert "scale" in excinfo.value.params


def test_pdf_without_external_tool_is_unreachable():
    codec = FakeCodec(tier_a_size=50000, gs_available=False, image_share=0.05)
    chain = pdf_chain(codec, target=1000)

    with pytest.raises(BudgetUnreachable) as excinfo:
        chain.run()

    err = excinfo.value
    assert err.cause is DiagnosisCause.LOW_COMPRESSIBLE_CONTENT
    assert "non-compressible text/vector" in str(err)
    assert err.tiers_tried[-1] == "external_tool:unavailable"
    assert any("Install Ghostscript" in s for s in err.suggestions)
    assert not any(call[0] == "external" for call in codec.calls)


def test_pdf_external_tool_stops_at_first_fitting_preset():
    codec = FakeCodec(tier_a_size=50000, gs_available=True)
    result = pdf_chain(codec, target=10000).run()

    assert result.strategy is Strategy.EXTERNAL_TOOL_FALLBACK
    assert result.outcome.preset == "low"
    assert result.outcome.size == 9600
    assert [c[1] for c in codec.calls if c[0] == "external"] == ["high", "medium", "low"]


def test_pdf_external_tool_all_presets_over_budget():
    codec = FakeCodec(tier_a_size=50000, gs_available=True, image_share=0.9)
    chain = pdf_chain(codec, target=1000)

    with pytest.raises(BudgetUnreachable) as excinfo:
        chain.run()

    err = excinfo.value
    assert err.best_size == 5000  # minimum preset: 50 dpi
    assert err.cause is DiagnosisCause.IMAGE_DOMINATED
    assert err.tiers_tried[-1] == "external_tool:failed"


def test_external_tool_timeout_ends_tier():
    codec = FakeCodec(gs_available=True, gs_error=ToolTimeout("Ghostscript exceeded 1s"))
    chain = pdf_chain(codec, target=1000)

    outcome = chain.external_tool_tier()
    assert outcome.status is TierStatus.TIMED_OUT
    assert outcome.error.tier == "external_tool"
    assert outcome.error.params["preset"] == "high"
    assert len([c for c in codec.calls if c[0] == "external"]) == 1

    with pytest.raises(BudgetUnreachable) as excinfo:
        pdf_chain(FakeCodec(gs_available=True, gs_error=ToolTimeout("slow")), target=1000).run()
    assert "external_tool:timed_out" in excinfo.value.tiers_tried
    assert any("timed out" in s for s in excinfo.value.suggestions)


def test_external_tool_failure_is_recorded_not_raised():
    codec = FakeCodec(gs_available=True, gs_error=ToolFailed("exit 1"))
    outcome = pdf_chain(codec, target=1000).external_tool_tier()

    assert outcome.status is TierStatus.FAILED
    assert isinstance(outcome.error, ToolFailed)


def test_pdf_downscale_runs_before_external_tool():
    # 50000 * s^2 with s = sqrt(0.2) * 0.9 -> 8100 bytes
    codec = FakeCodec(tier_a_size=50000, gs_available=True)
    result = pdf_chain(codec, target=10000, allow_downscale=True).run()

    assert result.strategy is Strategy.RESOLUTION_FALLBACK
    assert not any(c[0] == "external" for c in codec.calls)


def test_pdf_search_is_single_tier_a_attempt():
    codec = FakeCodec(tier_a_size=500)
    chain = pdf_chain(codec, target=1000)

    assert chain.search.feasible
    assert chain.search.encode_calls == 1
    assert codec.calls == [("encode", 75)]


def test_chain_requires_target():
    request = CompressionRequest(input=b"x")
    search = SizeTargetSearch(lambda q: b"x", 10).run()
    with pytest.raises(ValueError):
        FallbackChain(FakeCodec(), request, search, image=Image.new("RGB", (1, 1)))


def test_chain_forwards_metadata_choice_to_every_tier():
    codec = FakeCodec(tier_a_size=50000, gs_available=True)
    chain = pdf_chain(codec, target=100, remove_metadata=False)
    codec.strip_flags.clear()

    with pytest.raises(BudgetUnreachable):
        chain.run()
    assert codec.strip_flags == [False] * len(PRESETS)

    codec = FakeCodec(tier_a_size=50000)
    chain = pdf_chain(codec, target=10000, allow_downscale=True, remove_metadata=True)
    codec.strip_flags.clear()

    assert chain.run().strategy is Strategy.RESOLUTION_FALLBACK
    assert codec.strip_flags == [True]
