# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
HAL (Hypertext Application Language) response formatting utilities.
Implements HATEOAS Level-3 API responses with state-dependent affordance links
for households, distributions and eligibility checks.
"""

from typing import Dict, List, Any, Optional
from urllib.parse import urljoin, urlencode
import math

from models.responses import HalLink

PROBLEM_BASE_URI = "https://api.relief-integrity.org/problems"


class HalLinkBuilder:
    """Builder for HAL links with proper URL construction."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/') + '/'

    def build_link(
        self,
        path: str,
        method: str = "GET",
        content_type: Optional[str] = None,
        title: Optional[str] = None,
        templated: bool = False
    ) -> HalLink:
        """Build a HAL link with proper URL construction."""
        href = urljoin(self.base_url, path.lstrip('/'))

        return HalLink(
            href=href,
            method=method,
            type=content_type,
            title=title,
            templated=templated or None
        )

    def build_self_link(self, resource_path: str) -> HalLink:
        """Build self link for a resource."""
        return self.build_link(resource_path, title="Self")

    def build_action_link(
        self,
        resource_path: str,
        action: str,
        method: str = "POST",
        title: Optional[str] = None
    ) -> HalLink:
        """Build action link for a resource."""
        return self.build_link(
            f"{resource_path}/{action}",
            method=method,
            content_type="application/json",
            title=title or action.title()
        )


class PaginationLinkBuilder:
    """Builder for pagination links in HAL collections."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def _page_link(self, base_path: str, params: Dict[str, Any], page: int, page_size: int, title: str) -> HalLink:
        query = urlencode({**params, 'page': page, 'page_size': page_size})
        return self.link_builder.build_link(f"{base_path}?{query}", title=title)

    def build_pagination_links(
        self,
        base_path: str,
        current_page: int,
        total_pages: int,
        page_size: int,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, HalLink]:
        """Build self/first/prev/next/last links for a collection page."""
        params = {k: v for k, v in (query_params or {}).items() if v is not None}
        links = {'self': self._page_link(base_path, params, current_page, page_size, "Current page")}

        if current_page > 1:
            links['first'] = self._page_link(base_path, params, 1, page_size, "First page")
            links['prev'] = self._page_link(base_path, params, current_page - 1, page_size, "Previous page")

        if current_page < total_pages:
            links['next'] = self._page_link(base_path, params, current_page + 1, page_size, "Next page")
            links['last'] = self._page_link(base_path, params, total_pages, page_size, "Last page")

        return links


class AffordanceLinkBuilder:
    """Builder for affordance links that depend on resource state."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def build_household_affordances(self, lookup_key: str, active: bool) -> Dict[str, HalLink]:
        """
        Links for a household addressed by its lookup key.

        Distribution and eligibility links are only offered to active
        households; inactive ones can only be reactivated.
        """
        base_path = f"/api/households/{lookup_key}"
        links = {
            'self': self.link_builder.build_self_link(base_path),
            'distributions': self.link_builder.build_link(
                f"{base_path}/distributions{{?category,page,page_size}}",
                title="Distribution history",
                templated=True
            )
        }

        if active:
            links['eligibility'] = self.link_builder.build_link(
                f"/api/distributions/eligibility?{urlencode({'reference': lookup_key})}",
                title="Eligibility by category"
            )
            links['record-distribution'] = self.link_builder.build_link(
                "/api/distributions",
                method="POST",
                content_type="application/json",
                title="Record a distribution"
            )
            links['deactivate'] = self.link_builder.build_action_link(
                base_path, "deactivate", title="Deactivate household"
            )
        else:
            links['activate'] = self.link_builder.build_action_link(
                base_path, "activate", title="Reactivate household"
            )

        return links

    def build_distribution_affordances(self, event: Dict[str, Any]) -> Dict[str, HalLink]:
        """Links for a recorded distribution event."""
        household_path = f"/api/households/{event['lookup_key']}"
        query = urlencode({'reference': event['lookup_key'], 'category': event['category']})
        return {
            'household': self.link_builder.build_link(household_path, title="Household"),
            'history': self.link_builder.build_link(
                f"{household_path}/distributions?{urlencode({'category': event['category']})}",
                title="Category history"
            ),
            'eligibility': self.link_builder.build_link(
                f"/api/distributions/eligibility?{query}",
                title="Next eligibility"
            )
        }

    def build_eligibility_affordances(self, lookup_key: str, category: str, eligible: bool) -> Dict[str, HalLink]:
        """Links for an eligibility check; recording is offered only when eligible."""
        query = urlencode({'reference': lookup_key, 'category': category})
        links = {
            'self': self.link_builder.build_self_link(f"/api/distributions/eligibility?{query}"),
            'household': self.link_builder.build_link(f"/api/households/{lookup_key}", title="Household")
        }
        if eligible:
            links['record-distribution'] = self.link_builder.build_link(
                "/api/distributions",
                method="POST",
                content_type="application/json",
                title=f"Record a {category.lower()} distribution"
            )
        return links


class HalResponseBuilder:
    """Main HAL response builder."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')
        self.link_builder = HalLinkBuilder(base_url)
        self.pagination_builder = PaginationLinkBuilder(base_url)
        self.affordance_builder = AffordanceLinkBuilder(base_url)

    @staticmethod
    def _dump_links(links: Dict[str, HalLink]) -> Dict[str, Dict[str, Any]]:
        return {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}

    def build_resource_response(self, data: Dict[str, Any], links: Dict[str, HalLink]) -> Dict[str, Any]:
        response = dict(data)
        response['_links'] = self._dump_links(links)
        return response

    def build_collection_response(
        self,
        items: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        collection_path: str,
        query_params: Optional[Dict[str, Any]] = None,
        embedded_name: str = 'items'
    ) -> Dict[str, Any]:
        """Build a HAL collection response with pagination links."""
        total_pages = max(1, math.ceil(total / page_size)) if page_size > 0 else 1

        pagination_links = self.pagination_builder.build_pagination_links(
            collection_path,
            page,
            total_pages,
            page_size,
            query_params
        )

        return {
            'total': total,
            'page': page,
            'page_size': page_size,
            'total_pages': total_pages,
            '_links': self._dump_links(pagination_links),
            '_embedded': {
                embedded_name: items
            }
        }

    def build_error_response(
        self,
        error_type: str,
        title: str,
        status: int,
        detail: str,
        instance: str,
        validation_errors: Optional[List[Dict[str, Any]]] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build RFC 7807 compliant error response with HAL links."""
        error_response = {
            'type': f"{PROBLEM_BASE_URI}/{error_type}",
            'title': title,
            'status': status,
            'detail': detail,
            'instance': instance
        }

        if validation_errors:
            error_response['errors'] = validation_errors
        if extra:
            error_response.update(extra)

        links = {
            'help': self.link_builder.build_link(
                f"/docs/errors#{error_type}",
                title="Error documentation"
            )
        }

        if error_type == "validation-error":
            links['schema'] = self.link_builder.build_link("/openapi/openapi.json", title="API schema")
        elif error_type == "duplicate-identity" and extra and extra.get('existing_lookup_key'):
            links['existing'] = self.link_builder.build_link(
                f"/api/households/{extra['existing_lookup_key']}",
                title="Existing household"
            )

        error_response['_links'] = self._dump_links(links)
        return error_response


class HalFormatter:
    """High-level HAL formatter with convenience methods."""

    def __init__(self, base_url: str):
        self.builder = HalResponseBuilder(base_url)

    def format_household(self, household: Dict[str, Any]) -> Dict[str, Any]:
        """Format a public household view with HAL links."""
        links = self.builder.affordance_builder.build_household_affordances(
            household['lookup_key'], household['active']
        )
        return self.builder.build_resource_response(household, links)

    def format_registration(self, registration: Dict[str, Any]) -> Dict[str, Any]:
        """Format a registration outcome; the household is embedded with its own links."""
        data = dict(registration)
        data['household'] = self.format_household(registration['household'])
        links = {
            'self': self.builder.link_builder.build_self_link(f"/api/households/{registration['lookup_key']}"),
            'household': self.builder.link_builder.build_link(
                f"/api/households/{registration['lookup_key']}", title="Household"
            )
        }
        return self.builder.build_resource_response(data, links)

    def format_distribution(self, distribution: Dict[str, Any]) -> Dict[str, Any]:
        links = self.builder.affordance_builder.build_distribution_affordances(distribution)
        return self.builder.build_resource_response(distribution, links)

    def format_distribution_history(
        self,
        events: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        lookup_key: str,
        category: Optional[str] = None
    ) -> Dict[str, Any]:
        """Format a page of distribution history with HAL links."""
        formatted = [self.format_distribution(event) for event in events]
        response = self.builder.build_collection_response(
            formatted,
            total,
            page,
            page_size,
            f"/api/households/{lookup_key}/distributions",
            {'category': category},
            embedded_name='distributions'
        )
        response['_links']['household'] = self.builder.link_builder.build_link(
            f"/api/households/{lookup_key}", title="Household"
        ).model_dump(exclude_none=True)
        return response

    def format_eligibility(self, eligibility: Dict[str, Any], lookup_key: str) -> Dict[str, Any]:
        links = self.builder.affordance_builder.build_eligibility_affordances(
            lookup_key, eligibility['category'], eligibility['eligible']
        )
        return self.builder.build_resource_response(eligibility, links)

    def format_eligibility_summary(self, results: List[Dict[str, Any]], lookup_key: str) -> Dict[str, Any]:
        """Format eligibility for every category."""
        return {
            'lookup_key': lookup_key,
            '_links': self.builder._dump_links({
                'self': self.builder.link_builder.build_self_link(
                    f"/api/distributions/eligibility?{urlencode({'reference': lookup_key})}"
                ),
                'household': self.builder.link_builder.build_link(f"/api/households/{lookup_key}", title="Household")
            }),
            '_embedded': {
                'categories': [self.format_eligibility(result, lookup_key) for result in results]
            }
        }

    def format_statistics(self, statistics: Dict[str, Any]) -> Dict[str, Any]:
        links = {'self': self.builder.link_builder.build_self_link("/api/stats")}
        return self.builder.build_resource_response(statistics, links)

    def format_validation_error(
        self,
        detail: str,
        instance: str,
        validation_errors: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Format a validation error response."""
        return self.builder.build_error_response(
            "validation-error",
            "Validation Error",
            400,
            detail,
            instance,
            validation_errors
        )

    def format_not_found_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "resource-not-found",
            "Resource Not Found",
            404,
            detail,
            instance
        )

    def format_duplicate_error(self, detail: str, instance: str, extra: Dict[str, Any]) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "duplicate-identity",
            "Duplicate Identity",
            409,
            detail,
            instance,
            extra=extra
        )

    def format_not_eligible_error(self, detail: str, instance: str, extra: Dict[str, Any]) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "not-eligible",
            "Not Eligible",
            409,
            detail,
            instance,
            extra=extra
        )

    def format_unavailable_error(self, error_type: str, title: str, detail: str, instance: str,
                                 extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.builder.build_error_response(error_type, title, 503, detail, instance, extra=extra)

    def format_timeout_error(self, detail: str, instance: str) -> Dict[str, Any]:
        return self.builder.build_error_response(
            "operation-timeout",
            "Operation Timeout",
            504,
            detail,
            instance
        )

    def format_server_error(self, detail: str, instance: str) -> Dict[str, Any]:
        """Format a server error response."""
        return self.builder.build_error_response(
            "internal-server-error",
            "Internal Server Error",
            500,
            detail,
            instance
        )


def create_hal_formatter(base_url: str) -> HalFormatter:
    """Create a HAL formatter instance."""
    return HalFormatter(base_url)
