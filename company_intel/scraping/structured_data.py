"""Map schema.org JSON-LD blocks onto company extraction fields.

The output uses the same field names as hosted-API extraction (`mission`,
`leadership`, `products`, ...) so the category extractor treats both alike.
"""

from __future__ import annotations

from typing import Any

ORGANIZATION_TYPES = frozenset(
    {"Organization", "Corporation", "LocalBusiness", "OnlineBusiness", "NGO", "EducationalOrganization"}
)
PRODUCT_TYPES = frozenset({"Product", "SoftwareApplication", "WebApplication", "Service"})
ARTICLE_TYPES = frozenset({"Article", "BlogPosting", "NewsArticle"})

ORGANIZATION_KEYS = ("name", "legalName", "description", "url", "logo", "foundingDate", "sameAs", "email", "telephone")


def _nodes(blocks: Any) -> list[dict[str, Any]]:
    """Flatten lists and `@graph` containers into plain JSON-LD nodes."""
    found: list[dict[str, Any]] = []
    pending = list(blocks) if isinstance(blocks, list) else [blocks]
    while pending:
        node = pending.pop(0)
        if isinstance(node, list):
            pending.extend(node)
        elif isinstance(node, dict):
            if isinstance(node.get("@graph"), list):
                pending.extend(node["@graph"])
            if "@type" in node:
                found.append(node)
    return found


def _types(node: dict[str, Any]) -> set[str]:
    value = node.get("@type")
    if isinstance(value, list):
        return {str(item) for item in value}
    return {str(value)} if value else set()


def _name(value: Any) -> str:
    if isinstance(value, list):
        value = value[0] if value else ""
    if isinstance(value, dict):
        return str(value.get("name") or "").strip()
    return str(value or "").strip()


def _person(node: dict[str, Any]) -> dict[str, Any]:
    person = {"name": _name(node)}
    if node.get("jobTitle"):
        person["role"] = str(node["jobTitle"])
    return person


def _offer(node: dict[str, Any]) -> dict[str, Any]:
    offers = node.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    if not isinstance(offers, dict):
        return {}
    offer: dict[str, Any] = {}
    if offers.get("price") is not None:
        offer["price"] = offers["price"]
    if offers.get("priceCurrency"):
        offer["currency"] = offers["priceCurrency"]
    return offer


def fields_from_json_ld(blocks: Any) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for node in _nodes(blocks):
        types = _types(node)

        if types & ORGANIZATION_TYPES and "organization" not in fields:
            organization = {key: node[key] for key in ORGANIZATION_KEYS if node.get(key)}
            if organization:
                fields["organization"] = organization
            if node.get("slogan"):
                fields["mission"] = str(node["slogan"])
            founders = node.get("founder") or node.get("founders")
            if founders:
                people = founders if isinstance(founders, list) else [founders]
                leaders = [
                    {"name": _name(person), "role": "Founder"} for person in people if _name(person)
                ]
                if leaders:
                    fields.setdefault("leadership", []).extend(leaders)

        if "Person" in types and _name(node):
            fields.setdefault("team", []).append(_person(node))

        if types & PRODUCT_TYPES and _name(node):
            product = {"name": _name(node)}
            if node.get("description"):
                product["description"] = str(node["description"])
            offer = _offer(node)
            fields.setdefault("products", []).append(product)
            if offer:
                fields.setdefault("pricing", []).append({"product": product["name"], **offer})

        if types & ARTICLE_TYPES and node.get("headline"):
            article = {"title": str(node["headline"])}
            if node.get("datePublished"):
                article["published"] = str(node["datePublished"])
            if _name(node.get("author")):
                article["author"] = _name(node["author"])
            fields.setdefault("articles", []).append(article)

    return fields
