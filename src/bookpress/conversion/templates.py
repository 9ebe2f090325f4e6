"""HTML, CSS and in-page scripts used when printing books.

Everything here is plain string building; the rendering engine decides what
to do with it.
"""

from html import escape
from typing import List, Optional

from ..content import (
    BACK_MATTER_TITLE,
    FRONT_MATTER_TITLE,
    ContentNode,
    LicenseInfo,
    get_license,
)

PAGE_MARGINS = "0.75in 0.625in 0.9in"  # top, left/right, bottom
PAGE_LINK = "https://{lib}.libretexts.org/@go/page/{id}"
MAIN_TOC_SUFFIX = "00:_Front_Matter/03:_Table_of_Contents"

# Front matter pages that never appear in a directory listing.
_LISTING_SKIPPED_FRONT_MATTER = ("TitlePage", "InfoPage", "Table of Contents")

NO_HEADER_TAGS = ("printoptions:no-header", "printoptions:no-header-title")


def header_template() -> str:
    return """
    <style>
      * { -webkit-print-color-adjust: exact; }
      #header { padding: 0 !important; margin: 0 !important; }
      #bookpressHeader {
          height: 100%;
          display: flex;
          align-items: center;
          margin: 0 0 0 0.4in;
          width: 100vw;
          padding-top: 1%;
          font-size: 10px;
          font-weight: bold;
      }
    </style>
    <div id="bookpressHeader"><span class="title"></span></div>
    """


def footer_template(
    node: Optional[ContentNode],
    main_color: str,
    page_license: Optional[LicenseInfo],
    prefix: str = "",
) -> str:
    """Footer with license on the left, page number in the middle and a permalink on the right."""
    license_html = ""
    if page_license:
        license_html = f'<a href="{escape(page_license.link)}">{escape(page_license.label)}</a>'

    attribution = ""
    info = node.print_info if node else None
    if info and info.program_name and info.program_url and info.attribution_prefix:
        attribution = (
            f'<div><a href="{escape(info.program_url)}" rel="noreferrer">'
            f"{escape(info.attribution_prefix)} {escape(info.program_name)}</a></div>"
        )

    permalink = ""
    if node:
        link = PAGE_LINK.format(lib=node.lib, id=node.id)
        permalink = f'<a href="{link}?pdf">{link}</a>'

    return f"""
    <style>
      * {{ -webkit-print-color-adjust: exact; }}
      a {{ text-decoration: none; color: white; }}
      #footer {{ display: flex; align-items: center; padding: 0 !important; margin: 0 !important; }}
      #bookpressFooter {{
          display: flex;
          width: 100vw;
          height: 20px;
          margin: 0 4%;
          border-radius: 10px;
          font-size: 7px;
          justify-content: center;
          background-color: {main_color};
      }}
      .footer-left, .footer-right {{
          display: inline-flex;
          flex: 1;
          align-items: center;
          color: #F5F5F5;
          padding: 1%;
      }}
      .footer-left {{ justify-content: space-between; }}
      .footer-right {{ justify-content: flex-end; }}
      .footer-center {{ display: inline-flex; align-items: center; justify-content: center; }}
      .footer-pagenum {{
          background-color: white;
          border: 1px solid {main_color};
          color: {main_color};
          padding: 2px;
          border-radius: 10px;
          min-width: 10px;
          text-align: center;
          font-size: 8px;
      }}
      .pageNumber {{ display: inline-block; }}
    </style>
    <div id="bookpressFooter">
      <div class="footer-left">{license_html}{attribution}</div>
      <div class="footer-center">
        <div class="footer-pagenum">{escape(prefix)}<div class="pageNumber"></div></div>
      </div>
      <div class="footer-right">{permalink}</div>
    </div>
    """


TOC_STYLES = """
  #libre-print-directory-header {
    color: white !important;
    font-size: 1.6em !important;
    font-family: "Lato", Arial, serif !important;
    text-transform: uppercase;
    font-weight: bold;
    margin: 0 0 0 1% !important;
    padding: 1% 0 !important;
    letter-spacing: .05em !important;
  }
  #libre-print-directory-header-container {
    display: flex;
    background: #127BC4;
    margin: 0 0 2%;
    padding: 0;
    width: 100%;
    align-items: center;
  }
  .nobreak { page-break-inside: avoid; }
  .indent0 { margin-left: 6px !important; }
  .indent1 { margin-left: 12px !important; }
  .indent2 { margin-left: 18px !important; }
  .indent3 { margin-left: 24px !important; }
  .indent4 { margin-left: 30px !important; }
  .libre-print-directory { margin: 0; padding: 0 0 2%; }
  .libre-print-list {
    list-style-type: none;
    margin: 0 !important;
    padding: 0 !important;
    font-size: 12px;
  }
  .libre-print-list li { padding-bottom: 2px; }
  .libre-print-sublisting0 { padding-bottom: 8px; }
  .libre-print-sublisting1 { padding-bottom: 4px; }
  .libre-print-sublisting2 { padding-bottom: 2px; }
  .libre-print-list h2::before { content: none !important; }
"""


def shows_headers(node: ContentNode) -> bool:
    return not any(tag in node.tags for tag in NO_HEADER_TAGS)


def page_css(show_headers: bool) -> str:
    """Print pagination for a content page."""
    margin = PAGE_MARGINS if show_headers else "0.625in"
    return f"""
    @page {{
      size: calc(8.5in - (0.75in + 0.9in)) calc(11in - 0.625in);
      margin: {margin};
      padding: 0;
      print-color-adjust: exact;
    }}
    #elm-main-content {{ padding: 0 !important; }}
    {TOC_STYLES}
    """


def toc_css(is_main_toc: bool) -> str:
    return f"""
    @page {{
      size: letter portrait;
      margin: {PAGE_MARGINS};
      padding: 0;
    }}
    {"" if is_main_toc else TOC_STYLES}
    """


def extra_page_css(node: ContentNode) -> Optional[str]:
    """Per-page style tweaks driven by tags."""
    if "hidetop:solutions" in node.tags:
        return "dd, dl {display: none;} h3 {font-size: 160%}"
    return None


def toc_url(node: ContentNode) -> str:
    """The main TOC is printed from the front matter's Table of Contents page."""
    if not node.is_main_toc:
        return node.url
    sep = "" if node.url.endswith("/") else "/"
    return f"{node.url}{sep}{MAIN_TOC_SUFFIX}"


def _listing_children(node: ContentNode) -> List[ContentNode]:
    children: List[ContentNode] = []
    for child in node.subpages:
        if child.title in (FRONT_MATTER_TITLE, BACK_MATTER_TITLE) and not child.subpages:
            continue
        if child.title == FRONT_MATTER_TITLE:
            children.extend(
                c for c in child.subpages if c.title not in _LISTING_SKIPPED_FRONT_MATTER
            )
        elif child.title == BACK_MATTER_TITLE:
            children.extend(child.subpages)
        else:
            children.append(child)
    return children


def build_directory_listing(node: ContentNode, level: int = 2, is_sub_toc: bool = False) -> str:
    """Nested ``<ul>`` of a node's descendants for overview and TOC pages.

    Guide pages at the top level are listed one level deeper. Two columns
    are used for the book's cover page when it is tagged ``columns:two``.
    """
    if not node.subpages:
        return ""

    if level == 2 and "article:topic-guide" in node.tags:
        is_sub_toc = True
        level = 3

    two_column = level == 2 and "columns:two" in node.tags and node.is_main_toc
    heading = "h2" if level == 2 else "h"

    items = []
    for child in _listing_children(node):
        sub_listing = build_directory_listing(child, level + 1, is_sub_toc)
        if not child.url or not child.title:
            continue
        indent = f"indent{level - 2}" if level > 2 else ""
        spacing = f"libre-print-sublisting{level - 2}" if sub_listing else ""
        items.append(
            f'<li><div class="nobreak {indent} {spacing}"><{heading}>'
            f'<a href="{escape(child.url)}">{escape(child.title)}</a></{heading}></div>'
            f"{sub_listing}</li>"
        )

    style = ' style="column-count: 2;"' if two_column else ""
    return f"<ul class='libre-print-list'{style}>{''.join(items)}</ul>"


def directory_page_type(node: ContentNode) -> str:
    if node.is_main_toc or "Table of Contents" in node.title:
        return "Table of Contents"
    if "article:topic-guide" in node.tags:
        return "Chapter Overview"
    return "Section Overview"


# Replaces the CMS's own directory widget with our listing and adds a banner.
INJECT_DIRECTORY_JS = """
({ listing, pageType }) => {
  const directory = document.querySelector('.mt-guide-content, .mt-category-container');
  if (!directory) return;
  const replacement = document.createElement('div');
  replacement.innerHTML = listing;
  replacement.classList.add('libre-print-directory');
  directory.replaceWith(replacement);

  const pageTitle = document.querySelector('#title');
  const parent = pageTitle && pageTitle.parentNode;
  if (!pageTitle || !parent) return;
  pageTitle.setAttribute('style', 'border-bottom: none !important');
  const banner = document.createElement('h1');
  banner.appendChild(document.createTextNode(pageType));
  banner.id = 'libre-print-directory-header';
  const container = document.createElement('div');
  container.id = 'libre-print-directory-header-container';
  container.appendChild(banner);
  parent.insertBefore(container, pageTitle);
  if (pageType === 'Table of Contents') pageTitle.remove();
}
"""

# Links the page title back to the web version; returns the chapter prefix
# ("3.2" for "3.2: Vectors") or an empty string.
TITLE_LINK_JS = """
(url) => {
  const title = document.getElementById('title');
  if (!title) return '';
  const color = window.getComputedStyle(title).color;
  const text = title.innerText;
  title.innerHTML = `<a style="color:${color}; text-decoration: none" href="${url}">${text}</a>`;
  return text && text.includes(':') ? text.split(':')[0] : '';
}
"""

EAGER_IMAGES_JS = "(imgs) => imgs.forEach((img) => { img.loading = 'eager'; })"
OPEN_DETAILS_JS = "(els) => els.forEach((el) => { el.open = true; })"


def footer_for(node: ContentNode, main_color: str, prefix: str) -> str:
    page_license = node.license or get_license(node.tags)
    return footer_template(node, main_color, page_license, f"{prefix}." if prefix else "")


# --- Covers -----------------------------------------------------------------

def cover_styles(main_color: str) -> str:
    return f"""
    <style>
      @page {{ margin: 0; }}
      html, body {{ margin: 0; padding: 0; height: 100%; -webkit-print-color-adjust: exact; }}
      body {{ display: flex; flex-direction: row; font-family: "Lato", Arial, sans-serif; }}
      #frontContainer, #backContainer {{
          flex: 1;
          display: flex;
          flex-direction: column;
          justify-content: space-between;
          background-color: {main_color};
          color: white;
          box-sizing: border-box;
      }}
      #spine {{
          display: flex;
          align-items: center;
          justify-content: space-between;
          writing-mode: vertical-rl;
          background-color: {main_color};
          color: white;
          box-sizing: border-box;
      }}
      #frontTitle {{ font-size: 3em; font-weight: bold; }}
      #frontAuthor {{ font-size: 1.6em; }}
    </style>
    """


def front_cover(node: ContentNode) -> str:
    info = node.print_info
    title = info.title or node.title
    return f"""
    <div id="frontContainer">
      <div id="frontTitle">{escape(title)}</div>
      <div id="frontAuthor">{escape(info.author_name)}</div>
      <div id="frontCompany">{escape(info.company_name)}</div>
    </div>
    """


def back_cover(node: ContentNode) -> str:
    return f"""
    <div id="backContainer">
      <div id="backSummary">{escape(node.summary)}</div>
    </div>
    """


def spine(node: ContentNode, spine_width_in: float) -> str:
    info = node.print_info
    title = info.spine_title or info.title or node.title
    return f"""
    <div id="spine" style="width: {spine_width_in}in; min-width: {spine_width_in}in;">
      <span>{escape(title)}</span>
      <span>{escape(info.author_name)}</span>
    </div>
    """


COVER_EXTRA_PADDING = """
    <style>
      #frontContainer, #backContainer { padding: 117px 50px; }
      #spine { padding: 117px 0; }
    </style>
"""
