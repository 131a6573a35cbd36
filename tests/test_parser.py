"""Tests for HTML link extraction."""

from crawlfrontier.crawler.parser import LinkExtractor


URL = 'http://example.com/dir/page.html'


def test_extracts_links_in_order_without_duplicates():
    html = b'''
    <html><body>
      <a href="/a">A</a>
      <a href="b.html">B</a>
      <a href="/a">A again</a>
      <map><area href="http://other.test/x"></map>
    </body></html>
    '''
    assert LinkExtractor().extract_links(URL, html, 'text/html') == ['/a', 'b.html', 'http://other.test/x']


def test_skips_non_crawlable_and_nofollow():
    html = b'''
    <a href="#top">top</a>
    <a href="javascript:void(0)">js</a>
    <a href="mailto:me@example.com">mail</a>
    <a href="tel:123">tel</a>
    <a href="/private" rel="nofollow">hidden</a>
    <a href="  ">blank</a>
    <a href="/ok">ok</a>
    '''
    assert LinkExtractor().extract_links(URL, html, 'text/html') == ['/ok']


def test_follow_nofollow_option():
    html = b'<a href="/private" rel="nofollow">hidden</a>'
    assert LinkExtractor(follow_nofollow=True).extract_links(URL, html) == ['/private']


def test_honors_base_href():
    html = b'<html><head><base href="http://cdn.test/root/"></head><body><a href="x">x</a></body></html>'
    assert LinkExtractor().extract_links(URL, html, 'text/html') == ['http://cdn.test/root/x']


def test_non_html_payload():
    extractor = LinkExtractor()
    assert extractor.extract_links(URL, b'{"a": 1}', 'application/json') == []
    assert extractor.extract_links(URL, None, 'text/html') == []
    assert extractor.accepts('application/xhtml+xml; charset=utf-8')
