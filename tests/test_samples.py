import json
import random

from promptreels.core.samples import (
    REFERENCE_MAX_CHARS,
    ArticleSampleSource,
    Sample,
    StaticSampleSource,
    draw_samples,
)


def _write_manifest(path, articles):
    path.write_text(json.dumps({"articles": articles}))
    return path


def test_static_source_falls_back_to_default():
    default = Sample(media_path="/frames/default.jpg")
    source = StaticSampleSource({"news": Sample(media_path="/frames/news.jpg"), "default": default})
    assert source.sample("news").media_path == "/frames/news.jpg"
    assert source.sample("reels") is default
    assert StaticSampleSource({}).sample("news") is None


def test_article_source_uses_described_articles_only(tmp_path):
    manifest = _write_manifest(
        tmp_path / "articles.json",
        [
            {
                "article_id": "pending",
                "status": "fetched",
                "text": "not ready",
                "scenes": [{"frames": [{"path": "/frames/p.jpg"}]}],
            },
            {
                "article_id": "a1",
                "status": "described",
                "text": "x" * 800,
                "scenes": [{"frames": []}, {"frames": [{"path": "/frames/a1-1.jpg"}]}],
            },
        ],
    )
    source = ArticleSampleSource(manifest, rng=random.Random(7))
    sample = source.sample("news")

    assert sample.media_path == "/frames/a1-1.jpg"
    assert len(sample.reference_text) == REFERENCE_MAX_CHARS
    assert sample.reference.startswith("a1:")


def test_article_source_prefers_domain_tagged_articles(tmp_path):
    manifest = _write_manifest(
        tmp_path / "articles.json",
        [
            {
                "article_id": "match",
                "status": "rated",
                "domain": "sports",
                "title": "Cup final",
                "scenes": [{"frames": [{"path": "/frames/match.jpg"}]}],
            },
            {
                "article_id": "general",
                "status": "described",
                "description": "City council vote",
                "scenes": [{"frames": [{"path": "/frames/general.jpg"}]}],
            },
        ],
    )
    source = ArticleSampleSource(manifest, rng=random.Random(1))
    samples = draw_samples(source, ["sports", "news"])

    assert samples["sports"].reference_text == "Cup final"
    assert samples["news"].media_path == "/frames/general.jpg"


def test_article_source_without_manifest_yields_no_samples(tmp_path):
    source = ArticleSampleSource(tmp_path / "missing.json")
    assert draw_samples(source, ["news", "sports"]) == {}
