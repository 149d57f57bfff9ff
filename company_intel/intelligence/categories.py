"""Intelligence taxonomy: category definitions, URL rules and schema field map.

This is product configuration. The extractor only relies on its shape.
"""

from __future__ import annotations

import re

from company_intel.models.intelligence import CategoryDefinition, IntelligenceCategory as C


def _define(category: C, name: str, description: str, *keywords: str) -> CategoryDefinition:
    return CategoryDefinition(category=category, name=name, description=description, keywords=keywords)


CATEGORY_DEFINITIONS: dict[C, CategoryDefinition] = {
    d.category: d
    for d in (
        _define(C.CORPORATE, "Corporate Overview", "Company information, mission, vision, and history",
                "about", "company", "overview", "who we are", "mission", "vision", "values"),
        _define(C.PRODUCTS, "Products & Services", "Product and service offerings",
                "products", "services", "solutions", "offerings", "what we do"),
        _define(C.PRICING, "Pricing Information", "Pricing models, plans, and tiers",
                "pricing", "plans", "cost", "price", "subscription", "packages"),
        _define(C.COMPETITORS, "Competitors", "Direct and indirect competitors",
                "vs", "versus", "compare", "alternative", "competitor", "comparison"),
        _define(C.TEAM, "Team & Leadership", "Executive team, board members, and key personnel",
                "team", "leadership", "executives", "management", "board", "founders", "people"),
        _define(C.CASE_STUDIES, "Case Studies", "Customer success stories and use cases",
                "case study", "success story", "customer story", "results", "roi"),
        _define(C.TECHNICAL, "Technical Stack", "Technologies, platforms, and technical architecture",
                "technology", "tech stack", "built with", "powered by", "platform", "api"),
        _define(C.COMPLIANCE, "Compliance & Certifications", "Security, compliance standards, and certifications",
                "compliance", "security", "certification", "gdpr", "hipaa", "soc2", "iso"),
        _define(C.BLOG, "Blog & Insights", "Company blog posts and thought leadership",
                "blog", "article", "post", "insights", "thought leadership"),
        _define(C.TESTIMONIALS, "Testimonials", "Customer testimonials and reviews",
                "testimonial", "review", "feedback", "quote", "what customers say"),
        _define(C.PARTNERSHIPS, "Partnerships", "Strategic partnerships and alliances",
                "partners", "partnerships", "alliances", "collaborations", "ecosystem"),
        _define(C.RESOURCES, "Resources", "Documentation, guides, and educational content",
                "resources", "documentation", "guides", "whitepapers", "ebooks", "webinars"),
        _define(C.EVENTS, "Events", "Conferences, webinars, and company events",
                "events", "conference", "webinar", "workshop", "summit"),
        _define(C.FEATURES, "Features", "Product and service features",
                "features", "capabilities", "functionality", "benefits"),
        _define(C.INTEGRATIONS, "Integrations", "Third-party integrations and API connections",
                "integrations", "integrate", "connect", "api", "apps", "zapier"),
        _define(C.SUPPORT, "Support Channels", "Customer support and help resources",
                "support", "help", "contact", "customer service", "help center"),
        _define(C.CAREERS, "Careers & Hiring", "Job openings and career opportunities",
                "careers", "jobs", "hiring", "join us", "work with us", "openings"),
        _define(C.INVESTORS, "Investors", "Investor relations and funding information",
                "investors", "funding", "investment", "series", "backed by", "venture"),
        _define(C.PRESS, "Press & News", "Press releases and news coverage",
                "press", "news", "announcement", "press release", "media"),
        _define(C.MARKET_POSITION, "Market Position", "Market share, positioning, and industry analysis",
                "market share", "market position", "industry", "market leader"),
        _define(C.CONTENT, "Content", "General content and marketing materials",
                "content", "materials", "assets", "downloads"),
        _define(C.SOCIAL_PROOF, "Social Proof", "Awards, certifications, and recognition",
                "awards", "recognition", "certified", "trusted by", "rated"),
        _define(C.COMMERCIAL, "Commercial", "Sales process, terms, and commercial information",
                "sales", "commercial", "terms", "contract", "sla"),
        _define(C.CUSTOMER_EXPERIENCE, "Customer Experience", "Customer journey, onboarding, and experience",
                "customer experience", "onboarding", "customer journey", "success"),
        _define(C.FINANCIAL, "Financial Information", "Revenue, growth, and financial metrics",
                "revenue", "financial", "growth", "arr", "mrr", "profit"),
    )
}

# First match wins.
URL_PATTERNS: tuple[tuple[re.Pattern[str], C], ...] = tuple(
    (re.compile(pattern, re.IGNORECASE), category)
    for pattern, category in (
        (r"/about|/company|/who-we-are", C.CORPORATE),
        (r"/pricing|/plans|/subscribe", C.PRICING),
        (r"/products?(/|$)|/services?(/|$)|/features?(/|$)", C.PRODUCTS),
        (r"/case-stud|/success|/customers", C.CASE_STUDIES),
        (r"/blog|/news|/articles", C.BLOG),
        (r"/team|/people|/leadership", C.TEAM),
        (r"/careers?|/jobs?(/|$)|/hiring", C.CAREERS),
        (r"/investors?|/funding", C.INVESTORS),
        (r"/partners?|/integrations?", C.PARTNERSHIPS),
        (r"/support|/help|/docs", C.SUPPORT),
        (r"/compliance|/security|/privacy", C.COMPLIANCE),
        (r"/press|/media", C.PRESS),
    )
)

SCHEMA_FIELD_CATEGORIES: dict[str, C] = {
    "mission": C.CORPORATE,
    "vision": C.CORPORATE,
    "values": C.CORPORATE,
    "leadership": C.TEAM,
    "team": C.TEAM,
    "products": C.PRODUCTS,
    "services": C.PRODUCTS,
    "pricing": C.PRICING,
    "competitors": C.COMPETITORS,
    "case_studies": C.CASE_STUDIES,
    "caseStudies": C.CASE_STUDIES,
    "tech_stack": C.TECHNICAL,
    "techStack": C.TECHNICAL,
    "certifications": C.COMPLIANCE,
    "testimonials": C.TESTIMONIALS,
    "partners": C.PARTNERSHIPS,
    "integrations": C.INTEGRATIONS,
    "funding": C.INVESTORS,
    "organization": C.CORPORATE,
    "articles": C.BLOG,
}

# JSON schema sent to hosted extraction APIs; property names match SCHEMA_FIELD_CATEGORIES.
_NAMED_LIST = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {"name": {"type": "string"}, "description": {"type": "string"}},
    },
}
_STRING_LIST = {"type": "array", "items": {"type": "string"}}

COMPANY_EXTRACT_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "mission": {"type": "string"},
        "vision": {"type": "string"},
        "values": _STRING_LIST,
        "leadership": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"name": {"type": "string"}, "role": {"type": "string"}},
            },
        },
        "products": _NAMED_LIST,
        "services": _NAMED_LIST,
        "pricing": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"plan": {"type": "string"}, "price": {"type": "string"}},
            },
        },
        "competitors": _STRING_LIST,
        "case_studies": _NAMED_LIST,
        "tech_stack": _STRING_LIST,
        "certifications": _STRING_LIST,
        "integrations": _STRING_LIST,
        "funding": {"type": "string"},
    },
}
