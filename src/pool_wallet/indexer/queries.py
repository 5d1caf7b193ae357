"""GraphQL documents for the pool indexer."""

from __future__ import annotations

ACTIVITY_FIELDS = """
        id
        type
        poolId
        amount
        label
        precommitmentHash
        spentNullifier
        newCommitment
        feeAmount
        blockNumber
        timestamp
        transactionHash
"""

GET_ACTIVITIES = (
    """
query GetActivities($poolId: String!, $limit: Int, $after: String, $orderDirection: String) {
  activitys(
    where: { poolId: $poolId }
    limit: $limit
    after: $after
    orderBy: "timestamp"
    orderDirection: $orderDirection
  ) {
    items {"""
    + ACTIVITY_FIELDS
    + """    }
    pageInfo {
      hasNextPage
      startCursor
      endCursor
    }
  }
}
"""
)

GET_STATE_TREE_LEAVES = """
query GetStateTreeLeaves($poolId: String!, $limit: Int, $after: String) {
  merkleTreeLeafs(
    where: { poolId: $poolId }
    limit: $limit
    after: $after
    orderBy: "leafIndex"
    orderDirection: "asc"
  ) {
    items {
      leafIndex
      leafValue
      treeRoot
      treeSize
    }
    pageInfo {
      hasNextPage
      endCursor
    }
  }
}
"""

GET_LATEST_ASP_ROOT = """
query GetLatestAspRoot {
  associationSetUpdates(orderBy: "timestamp", orderDirection: "desc", limit: 1) {
    items {
      root
      ipfsCID
      timestamp
    }
  }
}
"""

HEALTH_CHECK = """
query HealthCheck {
  _meta {
    status
  }
}
"""

GET_DEPOSIT_BY_PRECOMMITMENT = (
    """
query GetDepositByPrecommitment($poolId: String!, $precommitmentHash: BigInt!) {
  activitys(
    where: { poolId: $poolId, type: "DEPOSIT", precommitmentHash: $precommitmentHash }
    limit: 1
  ) {
    items {"""
    + ACTIVITY_FIELDS
    + """    }
  }
}
"""
)
