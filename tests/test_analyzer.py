from searchbot.crawler.analyzer import (
    ContentAnalyzer,
    build_description,
    count_occurrences,
    extract_links,
    select_keywords,
)
from searchbot.crawler.parser import ContentParser


def _doc(html):
    return ContentParser().parse(html)


def test_meta_keywords_fill_limit_in_order():
    html = """
    <html><head>
      <meta name="keywords" content="alpha, beta, gamma, delta, epsilon">
      <title>Ignored Title Words</title>
    </head><body><h1>Heading Words</h1></body></html>
    """

    assert select_keywords(_doc(html), 3) == ["alpha", "beta", "gamma"]


def test_short_meta_terms_are_dropped():
    html = '<html><head><meta name="keywords" content="ab, abc, , xy, four"></head></html>'

    assert select_keywords(_doc(html), 10) == ["abc", "four"]


def test_headings_top_up_after_meta_in_tag_order():
    html = """
    <html><head>
      <meta name="keywords" content="python">
      <title>Snake Guide</title>
    </head><body>
      <h2>Second Level</h2>
      <h1>First Level</h1>
    </body></html>
    """

    assert select_keywords(_doc(html), 5) == ["python", "snake", "guide", "first", "level"]


def test_duplicate_keywords_are_collapsed():
    html = "<html><head><title>Home home HOME page</title></head></html>"

    assert select_keywords(_doc(html), 5) == ["home", "page"]


def test_rank_counts_whole_words_case_insensitively():
    assert count_occurrences("cat cat dog", "cat") == 2
    assert count_occurrences("Cat CAT concatenate cats", "cat") == 2


def test_regex_metacharacters_match_literally():
    text = "use a.*b+? here but not axxb"

    assert count_occurrences(text, "a.*b+?") == 1
    assert count_occurrences("c++ and c#", "c++") == 1
    assert count_occurrences("nothing special", "(unclosed[") == 0


def test_phrase_occurrences_span_whitespace():
    assert count_occurrences("hello   world, Hello World!", "hello world") == 2


def test_rank_adds_meta_keyword_occurrences():
    html = """
    <html><head><meta name="keywords" content="cat, cat toys"></head>
    <body><p>My cat likes cat food.</p></body></html>
    """

    analysis = ContentAnalyzer(keyword_limit=1).analyze(html, "http://pets.test/")

    assert analysis.keywords == ["cat"]
    # two in the body, two in the meta tag
    assert analysis.ranks == [4]


def test_heading_keywords_ranked_from_body_text():
    html = """
    <html><body>
      <h1>Welcome Home Page</h1>
      <p>welcome to our home. Home is where the welcome is.</p>
    </body></html>
    """

    analysis = ContentAnalyzer(keyword_limit=2).analyze(html, "http://home.test/")

    assert analysis.keywords == ["welcome", "home"]
    # the heading itself is visible text too
    assert analysis.ranks == [3, 3]


def test_script_text_is_not_counted():
    html = "<html><body><p>cat</p><script>var cat = 'cat';</script></body></html>"

    analysis = ContentAnalyzer().analyze(html, "http://a.test/")

    assert analysis.keywords == []
    assert count_occurrences(_doc(html).visible_text(), "cat") == 1


def test_description_prefers_meta_description():
    html = """
    <html><head><meta name="description" content="  A short summary. ">
    <title>Title</title></head></html>
    """

    assert build_description(_doc(html), 200) == "A short summary."


def test_long_meta_description_is_truncated():
    html = f'<html><head><meta name="description" content="{"x" * 50}"></head></html>'

    assert build_description(_doc(html), 10) == "x" * 10


def test_description_falls_back_to_title_and_headings():
    html = """
    <html><head><title>Site Title</title></head>
    <body><h1>Main</h1><h3>Detail</h3></body></html>
    """

    assert build_description(_doc(html), 200) == "Site Title Main Detail"


def test_description_truncates_at_limit():
    html = "<html><head><title>abcdef</title></head><body><h1>ghijkl</h1></body></html>"

    assert build_description(_doc(html), 8) == "abcdef g"


def test_links_resolved_deduplicated_and_filtered():
    html = """
    <html><body>
      <a href="/about#team">About</a>
      <a href="/about">About again</a>
      <a href="https://Other.TEST/page">Other</a>
      <a href="mailto:someone@site.test">Mail</a>
      <a href="javascript:void(0)">JS</a>
      <a href="#top">Top</a>
      <a href="relative.html">Relative</a>
    </body></html>
    """

    links = extract_links(_doc(html), "http://site.test/docs/index.html", 50)

    assert links == [
        "http://site.test/about",
        "https://other.test/page",
        "http://site.test/docs/relative.html",
    ]


def test_links_are_capped():
    anchors = "".join(f'<a href="/p{i}">p</a>' for i in range(20))
    html = f"<html><body>{anchors}</body></html>"

    links = extract_links(_doc(html), "http://site.test/", 5)

    assert links == [f"http://site.test/p{i}" for i in range(5)]


def test_analyze_collects_everything():
    html = """
    <html><head>
      <meta name="keywords" content="search, engine">
      <meta name="description" content="A tiny search engine.">
    </head><body>
      <p>The search engine indexes search results.</p>
      <a href="http://next.test/">next</a>
    </body></html>
    """

    analysis = ContentAnalyzer(keyword_limit=5, description_length=100).analyze(
        html, "http://start.test/"
    )

    assert analysis.url == "http://start.test/"
    assert analysis.links == ["http://next.test/"]
    assert analysis.keywords == ["search", "engine"]
    assert analysis.ranks == [3, 2]
    assert analysis.description == "A tiny search engine."
