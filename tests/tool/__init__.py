"""Test helpers for argocd-operator tools."""

INSTANCE_YAML = """\
apiVersion: argoproj.io/v1alpha1
kind: ArgoCD
metadata:
  name: demo
  namespace: ns1
spec:
  ha:
    enabled: true
    replicas: 3
  redis:
    autotls: openshift
  applicationSet:
    logLevel: debug
"""
