"""
recx - Link Extraction
"""

from typing import List

from bs4 import BeautifulSoup


def extract_links(html_text: str) -> List[str]:
    """Return anchor hrefs in document order, each value once."""
    soup = BeautifulSoup(html_text or "", "html.parser")
    links: List[str] = []
    seen = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"]
        if isinstance(href, list):
            href = " ".join(href)
        href = href.strip()
        if not href or href in seen:
            continue
        seen.add(href)
        links.append(href)
    return links
