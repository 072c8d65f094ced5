"""Manifests of companion resources removed after an agent deploy."""

from cluster_agent.remote import AGENT_NAMESPACE, NODE_AGENT_DAEMONSET

AUTH_DAEMONSET_NAME = "kube-api-auth"

AUTH_DAEMONSET = f"""apiVersion: apps/v1
kind: DaemonSet
metadata:
  name: {AUTH_DAEMONSET_NAME}
  namespace: {AGENT_NAMESPACE}
"""

NODE_AGENT_DAEMONSET_MANIFEST = f"""apiVersion: apps/v1
kind: DaemonSet
metadata:
  name: {NODE_AGENT_DAEMONSET}
  namespace: {AGENT_NAMESPACE}
"""
