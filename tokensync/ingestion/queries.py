"""
Event-source GraphQL documents. `$limit` and `$offset` are filled in by the pager.
"""

SOLANA_TRANSFERS_FOR_MINT = """
query ($limit: Int!, $offset: Int!, $mint: String!, $start: ISO8601DateTime, $end: ISO8601DateTime) {
  solana(network: solana) {
    transfers(
      options: {asc: "block.timestamp.iso8601", limit: $limit, offset: $offset}
      time: {between: [$start, $end]}
      currency: {is: $mint}
      success: {is: true}
    ) {
      amount
      transferType
      transaction { signature success }
      sender { address mintAccount type }
      receiver { address mintAccount type }
      block { timestamp { iso8601 } }
    }
  }
}
"""

SOLANA_TRANSFERS_FOR_SENDER = """
query ($limit: Int!, $offset: Int!, $mint: String!, $address: String!, $start: ISO8601DateTime, $end: ISO8601DateTime) {
  solana(network: solana) {
    transfers(
      options: {asc: "block.timestamp.iso8601", limit: $limit, offset: $offset}
      time: {between: [$start, $end]}
      currency: {is: $mint}
      senderAddress: {is: $address}
      success: {is: true}
      transferType: {in: [transfer, mint, burn]}
    ) {
      amount
      transferType
      transaction { signature success }
      sender { address mintAccount type }
      receiver { address mintAccount type }
      block { timestamp { iso8601 } }
    }
  }
}
"""

SOLANA_TRANSFERS_FOR_RECEIVER = SOLANA_TRANSFERS_FOR_SENDER.replace("senderAddress:", "receiverAddress:")

SOLANA_LATEST_TRANSFER_FROM_SENDER = """
query ($limit: Int!, $offset: Int!, $mint: String!, $address: String!, $before: ISO8601DateTime) {
  solana(network: solana) {
    transfers(
      options: {desc: "block.timestamp.iso8601", limit: $limit, offset: $offset}
      time: {before: $before}
      currency: {is: $mint}
      senderAddress: {is: $address}
      success: {is: true}
      transferType: {in: [transfer, mint, burn]}
    ) {
      transaction { signature success }
      block { timestamp { iso8601 } }
    }
  }
}
"""

SOLANA_LATEST_TRANSFER_TO_RECEIVER = SOLANA_LATEST_TRANSFER_FROM_SENDER.replace("senderAddress:", "receiverAddress:")

ETHEREUM_TRANSFERS_FOR_TOKEN = """
query ($network: EthereumNetwork!, $limit: Int!, $offset: Int!, $token: String!, $start: ISO8601DateTime, $end: ISO8601DateTime) {
  ethereum(network: $network) {
    transfers(
      options: {asc: "block.timestamp.iso8601", limit: $limit, offset: $offset}
      time: {between: [$start, $end]}
      currency: {is: $token}
      success: true
    ) {
      amount
      sender { address }
      receiver { address }
      transaction { hash }
      block { height timestamp { iso8601 } }
    }
  }
}
"""

ETHEREUM_TRANSFERS_FOR_SENDER = """
query ($network: EthereumNetwork!, $limit: Int!, $offset: Int!, $token: String!, $address: String!, $start: ISO8601DateTime, $end: ISO8601DateTime) {
  ethereum(network: $network) {
    transfers(
      options: {asc: "block.timestamp.iso8601", limit: $limit, offset: $offset}
      time: {between: [$start, $end]}
      currency: {is: $token}
      sender: {is: $address}
      success: true
    ) {
      amount
      sender { address }
      receiver { address }
      transaction { hash }
      block { height timestamp { iso8601 } }
    }
  }
}
"""

ETHEREUM_TRANSFERS_FOR_RECEIVER = ETHEREUM_TRANSFERS_FOR_SENDER.replace("sender: {is", "receiver: {is")

ETHEREUM_LATEST_TRANSFER_FROM_SENDER = """
query ($network: EthereumNetwork!, $limit: Int!, $offset: Int!, $token: String!, $address: String!, $before: ISO8601DateTime) {
  ethereum(network: $network) {
    transfers(
      options: {desc: "block.timestamp.iso8601", limit: $limit, offset: $offset}
      time: {before: $before}
      currency: {is: $token}
      sender: {is: $address}
      success: true
    ) {
      transaction { hash }
      block { height timestamp { iso8601 } }
    }
  }
}
"""

ETHEREUM_LATEST_TRANSFER_TO_RECEIVER = ETHEREUM_LATEST_TRANSFER_FROM_SENDER.replace("sender: {is", "receiver: {is")
