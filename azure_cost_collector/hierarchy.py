# Management group hierarchy resolution for subscriptions

import logging
from abc import ABC, abstractmethod
from dataclasses import replace

from .models import NO_DATA, SUBSCRIPTION, GroupMatch


class HierarchyApi(ABC):
    """
    Read-only management group queries used by the resolver.

    Implementations may also expose ``list_subscriptions_with_groups()``,
    yielding ``(subscription_id, ancestors)`` pairs with ancestors ordered
    root first. The resolver probes for it and skips that lookup when absent.
    """

    @abstractmethod
    def get_parent_chain(self, subscription_id):
        """Ancestors of the subscription as HierarchyNode list, root first"""

    @abstractmethod
    def list_groups(self):
        """Top-level management groups as HierarchyNode list (children not expanded)"""

    @abstractmethod
    def expand_group(self, group_id):
        """The group as a HierarchyNode with its direct children populated"""

    @abstractmethod
    def get_tenant_root_id(self):
        """Name of the tenant root management group"""

    @abstractmethod
    def get_descendant_tree(self, root_group_id):
        """The full tree below root_group_id as a HierarchyNode or list of HierarchyNode"""

    @abstractmethod
    def get_subscription_group_id(self, subscription_id):
        """Management group name attached to the subscription resource, or None"""

    @abstractmethod
    def get_group(self, group_id):
        """A single management group as HierarchyNode with parent_id set, or None"""


def _matches_subscription(node, subscription_id):
    if node.kind != SUBSCRIPTION:
        return False
    wanted = subscription_id.lower()
    return wanted in ((node.name or "").lower(), (node.id or "").rstrip("/").rsplit("/", 1)[-1].lower())


class HierarchyResolver:
    """Find the owning management group of a subscription, trying lookups in priority order"""

    def __init__(self, api):
        self.api = api
        self.logger = logging.getLogger(__name__)
        self.strategies = [
            ('parent_chain', self._from_parent_chain),
            ('subscription_listing', self._from_subscription_listing),
            ('group_expansion', self._from_group_expansion),
            ('descendant_tree', self._from_descendant_tree),
            ('subscription_property', self._from_subscription_property),
        ]

    def resolve(self, subscription_id):
        """Return the first GroupMatch any lookup produces, or None"""
        for name, strategy in self.strategies:
            try:
                match = strategy(subscription_id)
            except Exception as e:
                self.logger.warning(f"Management group lookup '{name}' failed for {subscription_id}: {e}")
                continue
            if match is not None:
                self.logger.info(f"Resolved {subscription_id} to management group "
                                 f"'{match.group_name}' ({match.path_string}) via {name}")
                return replace(match, strategy=name)
            self.logger.debug(f"Management group lookup '{name}' found nothing for {subscription_id}")

        self.logger.info(f"No management group found for {subscription_id}")
        return None

    def resolve_or_default(self, subscription_id):
        """(group name, path string), falling back to the No Data sentinel"""
        match = self.resolve(subscription_id)
        if match is None:
            return NO_DATA, NO_DATA
        return match.group_name, match.path_string

    def _from_parent_chain(self, subscription_id):
        chain = self.api.get_parent_chain(subscription_id) or []
        groups = [node for node in chain if node.is_group]
        if not groups:
            return None
        return GroupMatch(groups[-1].label, tuple(node.label for node in groups))

    def _from_subscription_listing(self, subscription_id):
        list_with_groups = getattr(self.api, 'list_subscriptions_with_groups', None)
        if not callable(list_with_groups):
            self.logger.debug("Subscription listing with management groups not available, skipping")
            return None

        wanted = subscription_id.lower()
        for listed_id, ancestors in list_with_groups():
            if (listed_id or "").lower() != wanted:
                continue
            groups = [node for node in ancestors or [] if node.is_group]
            if groups:
                return GroupMatch(groups[-1].label, tuple(node.label for node in groups))
            return None
        return None

    def _from_group_expansion(self, subscription_id):
        expanded = {}
        stack = []

        # First pass: direct children of every top-level group
        for top in self.api.list_groups() or []:
            if top.name in expanded:
                continue
            group = self._expand(top.name)
            if group is None:
                continue
            expanded[group.name] = group
            for child in group.children:
                if _matches_subscription(child, subscription_id):
                    return GroupMatch(group.label, self._path_to_root(group, expanded))

        # Second pass: depth-first through nested groups
        for group in reversed(list(expanded.values())):
            prefix = self._path_to_root(group, expanded)
            for child in reversed(group.children):
                if child.is_group and child.name not in expanded:
                    stack.append((child, prefix))

        visited = set(expanded)
        while stack:
            node, prefix = stack.pop()
            if node.name in visited:
                continue
            visited.add(node.name)
            group = self._expand(node.name)
            if group is None:
                continue
            path = prefix + (group.label,)
            for child in group.children:
                if _matches_subscription(child, subscription_id):
                    return GroupMatch(group.label, path)
            for child in reversed(group.children):
                if child.is_group and child.name not in visited:
                    stack.append((child, path))
        return None

    def _expand(self, group_id):
        """Expanded group, or None when this one group cannot be read"""
        try:
            return self.api.expand_group(group_id)
        except Exception as e:
            self.logger.debug(f"Could not expand management group {group_id}: {e}")
            return None

    def _from_descendant_tree(self, subscription_id):
        root_id = self.api.get_tenant_root_id()
        if not root_id:
            return None
        tree = self.api.get_descendant_tree(root_id)
        if tree is None:
            return None
        roots = tree if isinstance(tree, list) else [tree]

        stack = [(node, ()) for node in reversed(roots)]
        visited = set()
        while stack:
            node, ancestors = stack.pop()
            if _matches_subscription(node, subscription_id):
                if ancestors:
                    return GroupMatch(ancestors[-1], ancestors)
                continue
            if not node.is_group or node.name in visited:
                continue
            visited.add(node.name)
            path = ancestors + (node.label,)
            for child in reversed(node.children):
                stack.append((child, path))
        return None

    def _from_subscription_property(self, subscription_id):
        group_id = self.api.get_subscription_group_id(subscription_id)
        if not group_id:
            return None
        group = self.api.get_group(group_id)
        if group is None:
            return None
        return GroupMatch(group.label, self._path_to_root(group))

    def _path_to_root(self, group, known=None):
        """Display names from the root down to group, following parent_id links"""
        known = dict(known or {})
        path = [group.label]
        visited = {group.name}
        parent_id = group.parent_id
        while parent_id and parent_id not in visited:
            visited.add(parent_id)
            parent = known.get(parent_id)
            if parent is None:
                try:
                    parent = self.api.get_group(parent_id)
                except Exception as e:
                    self.logger.debug(f"Could not look up parent group {parent_id}: {e}")
                    break
            if parent is None:
                break
            known[parent_id] = parent
            path.append(parent.label)
            parent_id = parent.parent_id
        return tuple(reversed(path))
